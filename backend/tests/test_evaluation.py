import math

from conftest import at

from trackwise.simulation.evaluation import (
    ConfusionMetrics,
    EvaluationParams,
    baseline_pairs,
    confusion,
    evaluate_performance,
    ground_truth_pairs,
)


def test_confusion_counts():
    m = confusion(
        predicted={("a", "b"), ("a", "c")},
        truth={("a", "c"), ("b", "c")},
        universe=[("a", "b"), ("a", "c"), ("b", "c"), ("c", "d")],
    )
    assert (m.tp, m.fp, m.tn, m.fn) == (1, 1, 1, 1)
    assert m.accuracy == 0.5
    assert m.sensitivity == 0.5
    assert m.specificity == 0.5
    assert math.isclose(m.f1, 0.5)


def test_empty_metrics_do_not_divide_by_zero():
    m = ConfusionMetrics()
    assert m.accuracy == 0.0
    assert m.f1 == 0.0
    assert m.balanced_accuracy == 0.0


def test_baseline_covers_ground_truth(risk_engine, head_on_pair, make_train):
    t3 = make_train("T3", [("A", None, at(10)), ("B", at(10, 20), None)])
    trains = [*head_on_pair, t3]
    truth = ground_truth_pairs(risk_engine, trains, at(10), 30, 60, 1.0)
    base = baseline_pairs(risk_engine, trains, at(10), 30, 60, 5.0)
    assert ("T1", "T2") in truth
    assert truth <= base


def test_baseline_flags_close_trains_on_different_tracks(risk_engine, head_on_pair, make_train):
    # both reach B at 10:05, one on the main line and one leaving on the spur
    t4 = make_train("T4", [("A", None, at(9, 55)), ("B", at(10, 5), None)])
    t5 = make_train("T5", [("B", None, at(10, 5)), ("E", at(10, 25), None)])
    trains = [*head_on_pair, t4, t5]
    truth = ground_truth_pairs(risk_engine, trains, at(10), 30, 60, 1.0)
    base = baseline_pairs(risk_engine, trains, at(10), 30, 60, 5.0)
    assert ("T4", "T5") in base
    assert ("T4", "T5") not in truth
    assert ("T1", "T2") in truth
    assert truth <= base
    assert len(base) > len(truth)


def test_evaluate_performance_scores_head_on(risk_engine, head_on_pair):
    result = evaluate_performance(risk_engine, list(head_on_pair), at(10), EvaluationParams(horizon_min=30, step_sec=60))
    assert result.truth_pairs == {("T1", "T2")}
    assert ("T1", "T2") in result.ours_pairs
    assert result.ours.tp == 1
    assert result.ours.fn == 0

    data = result.to_dict()
    assert data["counts"]["truth"] == 1
    assert set(data["ours"]) >= {"TP", "FP", "TN", "FN", "F1"}


def test_evaluation_csv_layout(risk_engine, head_on_pair):
    result = evaluate_performance(risk_engine, list(head_on_pair), at(10), EvaluationParams(horizon_min=30))
    lines = result.to_csv().strip().splitlines()
    assert lines[0] == "Metric,Existing,Ours"
    assert lines[1].startswith("TP,")
    assert len(lines) == 10
