import json

import pytest

from gridmon import errors
from gridmon.models.domain import Severity
from gridmon.services.thresholds import ThresholdRule, ThresholdRuleSet

# ============================================================
# TABLE-DRIVEN TESTS FOR THE DEFAULT RULE TABLE
# ============================================================

@pytest.mark.parametrize("case", [
    {"id": "load_pf_ok", "type": "load", "metric": "power_factor", "value": 0.9, "expect": None},
    {"id": "load_pf_low", "type": "load", "metric": "power_factor", "value": 0.7, "expect": Severity.HIGH},
    {"id": "load_pf_very_low", "type": "load", "metric": "power_factor", "value": 0.6, "expect": Severity.CRITICAL},
    {"id": "load_current_at_max", "type": "load", "metric": "current", "value": 1.0, "expect": None},
    {"id": "load_current_over", "type": "load", "metric": "current", "value": 1.1, "expect": Severity.HIGH},
    {"id": "gen_freq_low", "type": "generator", "metric": "frequency", "value": 49.4, "expect": Severity.HIGH},
    {"id": "gen_freq_high", "type": "generator", "metric": "frequency", "value": 50.6, "expect": Severity.HIGH},
    {"id": "tx_temp_ok", "type": "transformer", "metric": "temperature", "value": 85.0, "expect": None},
    {"id": "tx_temp_hot", "type": "transformer", "metric": "temperature", "value": 90.0, "expect": Severity.HIGH},
    {"id": "tx_temp_critical", "type": "transformer", "metric": "temperature", "value": 103.0, "expect": Severity.CRITICAL},
    {"id": "no_rule_for_metric", "type": "load", "metric": "humidity", "value": 99.0, "expect": None},
    {"id": "no_rule_for_type", "type": "bus", "metric": "voltage", "value": 5.0, "expect": None},
], ids=lambda c: c["id"])
def test_default_rules(case, rules):
    v = rules.evaluate(case["type"], case["metric"], case["value"])
    if case["expect"] is None:
        assert v is None
    else:
        assert v is not None
        assert v.severity == case["expect"]
        assert v.metric == case["metric"]


def test_violation_reports_bound_side(rules):
    low = rules.evaluate("generator", "frequency", 49.0)
    high = rules.evaluate("generator", "frequency", 51.0)
    assert (low.bound, low.bound_kind) == (49.5, "min")
    assert (high.bound, high.bound_kind) == (50.5, "max")
    assert (low.minimum, low.maximum) == (49.5, 50.5)


# ============================================================
# PER-UNIT NORMALIZATION
# ============================================================

@pytest.mark.parametrize("raw,expect", [
    (10.5, None),
    (12.5, Severity.HIGH),       # 1.2 pu
    (13.2, Severity.CRITICAL),   # 1.267 pu
    (9.0, Severity.HIGH),        # 0.864 pu
    (7.0, Severity.CRITICAL),    # 0.672 pu
])
def test_voltage_normalized_by_reference(rules, raw, expect):
    v = rules.evaluate("load", "voltage", raw, reference_value=10.4167)
    if expect is None:
        assert v is None
    else:
        assert v.severity == expect
        assert v.value == raw
        assert v.normalized_value == pytest.approx(raw / 10.4167)


def test_reference_ignored_when_not_positive(rules):
    # Without a usable reference the raw value is compared
    assert rules.evaluate("load", "voltage", 1.0, reference_value=0) is None
    assert rules.evaluate("load", "voltage", 1.1, reference_value=None).severity == Severity.HIGH


def test_reference_for_reads_element_property(rules):
    assert rules.reference_for("generator", "power", {"rated_capacity": 50.0}) == 50.0
    assert rules.reference_for("generator", "frequency", {"rated_capacity": 50.0}) is None
    assert rules.reference_for("load", "voltage", {}) is None


# ============================================================
# ESCALATION POLICY
# ============================================================

def test_escalation_is_monotonic_in_distance(rules):
    order = {None: 0, Severity.HIGH: 1, Severity.CRITICAL: 2}
    values = [80.0 + i * 0.5 for i in range(60)]
    ranks = []
    for x in values:
        v = rules.evaluate("transformer", "temperature", x)
        ranks.append(order[v.severity if v else None])
    assert ranks == sorted(ranks)


def test_escalation_ratio_is_configurable():
    strict = ThresholdRuleSet(escalation_ratio=0.05)
    assert strict.evaluate("transformer", "temperature", 90.0).severity == Severity.CRITICAL
    with pytest.raises(ValueError):
        ThresholdRuleSet(escalation_ratio=-0.1)


# ============================================================
# REPLACEABLE TABLES
# ============================================================

def test_from_mapping_replaces_table():
    rs = ThresholdRuleSet.from_mapping({"load": {"current": {"max": 2.0}}})
    assert rs.evaluate("load", "current", 1.5) is None
    assert rs.evaluate("load", "power_factor", 0.1) is None
    assert rs.rule_for("load", "current") == ThresholdRule(max=2.0)


@pytest.mark.parametrize("data", [
    {"substation": {"current": {"max": 1.0}}},
    {"load": {"current": {}}},
    {"load": {"current": {"min": 2.0, "max": 1.0}}},
])
def test_from_mapping_rejects_bad_tables(data):
    with pytest.raises(errors.ValidationError):
        ThresholdRuleSet.from_mapping(data)


def test_from_json_file(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps({"transformer": {"temperature": {"max": 70}}}), encoding="utf-8")
    rs = ThresholdRuleSet.from_json_file(str(path), escalation_ratio=0.1)
    assert rs.escalation_ratio == 0.1
    assert rs.evaluate("transformer", "temperature", 75.0).severity == Severity.HIGH
    assert rs.evaluate("transformer", "temperature", 78.0).severity == Severity.CRITICAL
