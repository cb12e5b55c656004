"""Tests for the stateless threshold condition functions."""

import pytest

from servmon.alerts.conditions import (
    BYTES_PER_MB,
    compare,
    evaluate,
    extract_metric_value,
    should_clear,
)
from servmon.alerts.schemas import Threshold
from servmon.ingestion.schemas import MetricSample


def _threshold(metric_type: str = "cpu", operator: str = ">", value: float = 90.0) -> Threshold:
    return Threshold(
        name="rule",
        metric_type=metric_type,
        operator=operator,
        value=value,
        severity="warning",
    )


class TestExtractMetricValue:
    def test_cpu_is_used_directly(self, sample_metric):
        assert extract_metric_value(sample_metric, "cpu") == 45.0

    def test_memory_percentage(self, sample_metric):
        assert extract_metric_value(sample_metric, "memory") == pytest.approx(50.0)

    def test_disk_percentage(self, sample_metric):
        assert extract_metric_value(sample_metric, "disk") == pytest.approx(25.0)

    def test_network_in_uses_download(self, sample_metric):
        assert extract_metric_value(sample_metric, "network_in") == pytest.approx(2.0)

    def test_network_out_uses_upload(self, sample_metric):
        assert extract_metric_value(sample_metric, "network_out") == pytest.approx(1.0)

    def test_zero_memory_total_is_undefined(self):
        sample = MetricSample(server_id=1, memory_total=0, memory_used=10)
        assert extract_metric_value(sample, "memory") is None

    def test_zero_disk_total_is_undefined(self):
        sample = MetricSample(server_id=1, disk_total=0)
        assert extract_metric_value(sample, "disk") is None

    def test_unknown_metric_type(self, sample_metric):
        assert extract_metric_value(sample_metric, "load_avg") is None

    def test_megabyte_is_binary(self):
        sample = MetricSample(server_id=1, net_download=BYTES_PER_MB * 3)
        assert extract_metric_value(sample, "network_in") == 3.0


class TestCompare:
    @pytest.mark.parametrize(
        "value, operator, target, expected",
        [
            (95.0, ">", 90.0, True),
            (90.0, ">", 90.0, False),
            (90.0, ">=", 90.0, True),
            (89.9, ">=", 90.0, False),
            (5.0, "<", 10.0, True),
            (10.0, "<", 10.0, False),
            (10.0, "<=", 10.0, True),
            (50.0, "==", 50.0, True),
            (50.0000001, "==", 50.0, False),
        ],
    )
    def test_operators(self, value, operator, target, expected):
        assert compare(value, operator, target) is expected

    def test_unknown_operator_never_triggers(self):
        assert compare(100.0, "!=", 0.0) is False


class TestShouldClear:
    @pytest.mark.parametrize(
        "operator, value, expected",
        [
            (">", 90.0, True),
            (">", 90.1, False),
            (">=", 90.0, False),
            (">=", 89.9, True),
            ("<", 90.0, True),
            ("<", 89.9, False),
            ("<=", 90.0, False),
            ("<=", 90.1, True),
            ("==", 90.0, False),
            ("==", 91.0, True),
        ],
    )
    def test_clear_rule_per_operator(self, operator, value, expected):
        assert should_clear(value, _threshold(operator=operator, value=90.0)) is expected

    @pytest.mark.parametrize("operator", [">", ">=", "<", "<=", "=="])
    @pytest.mark.parametrize("value", [0.0, 89.99, 90.0, 90.01, 200.0])
    def test_clear_is_negation_of_trigger(self, operator, value):
        threshold = _threshold(operator=operator, value=90.0)
        assert should_clear(value, threshold) is not compare(value, operator, 90.0)

    def test_unknown_operator_never_clears(self):
        assert should_clear(1.0, _threshold(operator="~")) is False


class TestEvaluate:
    def test_triggered(self):
        sample = MetricSample(server_id=1, cpu_usage=97.5)
        assert evaluate(sample, _threshold()) == (97.5, True)

    def test_not_triggered(self, sample_metric):
        value, triggered = evaluate(sample_metric, _threshold(metric_type="disk", value=80.0))
        assert value == pytest.approx(25.0)
        assert triggered is False

    def test_undefined_value(self):
        sample = MetricSample(server_id=1, memory_total=0)
        assert evaluate(sample, _threshold(metric_type="memory", value=0.0)) == (0.0, False)
