from . import simulation, ws

__all__ = [
	"simulation", "ws"
]
