import numpy as np
import pytest

from trackwise.simulation.esn import EchoStateNetwork, build_features


def feed(esn, n=40):
    rng = np.random.default_rng(1)
    outputs = []
    for i in range(n):
        u = rng.uniform(-1, 1, size=4)
        outputs.append(esn.step(u))
        esn.train((i % 10) / 10.0)
    return outputs


def test_output_is_bounded():
    esn = EchoStateNetwork(reservoir_size=32, seed=3)
    outputs = feed(esn)
    assert all(0.0 <= y <= 1.0 for y in outputs)


def test_unknown_covariance_mode_rejected():
    with pytest.raises(ValueError):
        EchoStateNetwork(covariance_update="full")


def test_reservoir_is_scaled_to_spectral_radius():
    esn = EchoStateNetwork(reservoir_size=64, seed=5)
    radius = float(np.max(np.abs(np.linalg.eigvals(esn.w))))
    assert radius <= 0.9 + 1e-6


def test_update_modes_agree_once_then_diverge():
    diag = EchoStateNetwork(reservoir_size=16, covariance_update="diagonal", seed=11)
    exact = EchoStateNetwork(reservoir_size=16, covariance_update="exact", seed=11)

    inputs = [[0.5, 0.1, 0.0, 0.5], [0.6, 0.05, 0.0, 0.5], [0.2, -0.3, 1.0, 0.5]]
    targets = [0.1, 0.2, 0.3]

    for net in (diag, exact):
        net.step(inputs[0])
        net.train(targets[0])
    # P starts as a scaled identity, so the first update is the same
    assert np.allclose(diag.P, exact.P)
    assert np.allclose(diag.w_out, exact.w_out)

    for net in (diag, exact):
        net.step(inputs[1])
        net.train(targets[1])
    assert not np.allclose(diag.P, exact.P)

    for net in (diag, exact):
        net.step(inputs[2])
        net.train(targets[2])
    assert not np.allclose(diag.w_out, exact.w_out)


def test_non_finite_readout_resets():
    esn = EchoStateNetwork(reservoir_size=8, seed=2)
    esn.step([1.0, 0.0, 0.0, 0.5])
    esn.w_out[:] = np.nan
    assert esn.output() == 0.0
    assert np.all(esn.w_out == 0.0)


def test_build_features_are_normalized():
    u = build_features(speed_kmh=400, prev_speed_kmh=0, dt_seconds=1, at_station=True, vmax_kmh=100)
    assert list(u) == [1.0, 1.0, 1.0, 0.5]
    u = build_features(speed_kmh=0, prev_speed_kmh=100, dt_seconds=0, at_station=False, vmax_kmh=0)
    assert list(u) == [0.0, -1.0, 0.0, 0.0]
