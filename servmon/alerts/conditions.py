"""Stateless condition functions for threshold evaluation.

Each function maps a metric sample and a threshold to a value or a
decision. No I/O, no state. Opening, resolving and notification live in
``AlertService``.

The clear rule is the exact negation of the trigger rule, with strict and
inclusive comparisons swapped: a ``>=`` rule stays triggered at the
boundary value and only clears once the value drops below it.

``==`` compares floats exactly, so it almost never fires for percentages.
It is kept literal rather than approximated.
"""

import operator as op
from collections.abc import Callable

from servmon.alerts.schemas import Threshold
from servmon.ingestion.schemas import MetricSample

BYTES_PER_MB = 1024 * 1024

_TRIGGER_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    ">": op.gt,
    "<": op.lt,
    ">=": op.ge,
    "<=": op.le,
    "==": op.eq,
}

_CLEAR_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    ">": op.le,
    "<": op.ge,
    ">=": op.lt,
    "<=": op.gt,
    "==": op.ne,
}


def _percent(used: int, total: int) -> float | None:
    if total == 0:
        return None
    return used / total * 100


def extract_metric_value(sample: MetricSample, metric_type: str) -> float | None:
    """Map a sample to the scalar value a rule of ``metric_type`` compares.

    Args:
        sample: Metric sample.
        metric_type: cpu, memory, disk, network_in or network_out.

    Returns:
        Percentage for cpu/memory/disk, megabytes for network, or None when
        the value is undefined (zero total, unknown metric type).
    """
    if metric_type == "cpu":
        return float(sample.cpu_usage)
    if metric_type == "memory":
        return _percent(sample.memory_used, sample.memory_total)
    if metric_type == "disk":
        return _percent(sample.disk_used, sample.disk_total)
    if metric_type == "network_in":
        return sample.net_download / BYTES_PER_MB
    if metric_type == "network_out":
        return sample.net_upload / BYTES_PER_MB
    return None


def compare(value: float, operator: str, target: float) -> bool:
    """Apply a trigger operator. Unknown operators never trigger."""
    func = _TRIGGER_OPERATORS.get(operator)
    if func is None:
        return False
    return func(value, target)


def should_clear(value: float, threshold: Threshold) -> bool:
    """Decide whether an open alert under ``threshold`` should resolve.

    Args:
        value: Current metric value.
        threshold: Rule the alert was opened under.

    Returns:
        True when the clear rule for the rule's operator holds.
    """
    func = _CLEAR_OPERATORS.get(threshold.operator)
    if func is None:
        return False
    return func(value, threshold.value)


def evaluate(sample: MetricSample, threshold: Threshold) -> tuple[float, bool]:
    """Evaluate one rule against one sample.

    Returns:
        ``(value, triggered)``. An undefined value (e.g. ``memory_total``
        of zero) evaluates to ``(0.0, False)``.
    """
    value = extract_metric_value(sample, threshold.metric_type)
    if value is None:
        return 0.0, False
    return value, compare(value, threshold.operator, threshold.value)
