"""
thresholds.py

Purpose:
  Rule table mapping (element_type, metric) to operating bounds, and the
  severity policy applied to a violation.

Severity policy:
  - Out of bounds            -> HIGH
  - Beyond bound by > ratio  -> CRITICAL  (value > max*(1+r) or value < min*(1-r))
  The default ratio is 0.2. Only HIGH/CRITICAL are ever produced here;
  LOW/MEDIUM exist for manually created events.

Per-unit:
  Rules with a `reference` compare `value / element.properties[reference]`
  when that property is positive, so a raw 12.5 kV reading on a 10.4167 kV
  load is judged as 1.2 pu. Without a usable reference the raw value is used.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from gridmon import errors
from gridmon.models.domain import ElementType, Severity, Violation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThresholdRule:
    min: Optional[float] = None
    max: Optional[float] = None
    reference: Optional[str] = None

    def as_dict(self) -> Dict[str, float]:
        out: Dict[str, float] = {}
        if self.min is not None:
            out["min"] = self.min
        if self.max is not None:
            out["max"] = self.max
        return out


DEFAULT_RULES: Dict[str, Dict[str, ThresholdRule]] = {
    ElementType.LOAD.value: {
        "voltage": ThresholdRule(min=0.95, max=1.05, reference="voltage_level"),
        "current": ThresholdRule(max=1.0),
        "power_factor": ThresholdRule(min=0.8),
    },
    ElementType.GENERATOR.value: {
        "voltage": ThresholdRule(min=0.95, max=1.05, reference="voltage_level"),
        "frequency": ThresholdRule(min=49.5, max=50.5),
        "power": ThresholdRule(max=1.0, reference="rated_capacity"),
    },
    ElementType.TRANSFORMER.value: {
        "temperature": ThresholdRule(max=85.0),
        "current": ThresholdRule(max=1.1),
    },
}

DEFAULT_ESCALATION_RATIO = 0.2


class ThresholdRuleSet:
    def __init__(
        self,
        rules: Optional[Mapping[str, Mapping[str, ThresholdRule]]] = None,
        escalation_ratio: float = DEFAULT_ESCALATION_RATIO,
    ):
        if escalation_ratio < 0:
            raise ValueError("escalation_ratio must be >= 0")
        source = DEFAULT_RULES if rules is None else rules
        self.rules: Dict[str, Dict[str, ThresholdRule]] = {
            str(t): dict(metrics) for t, metrics in source.items()
        }
        self.escalation_ratio = float(escalation_ratio)

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Mapping[str, Mapping[str, Any]]],
        escalation_ratio: float = DEFAULT_ESCALATION_RATIO,
    ) -> "ThresholdRuleSet":
        """
        Builds a rule set from plain data, e.g.
          {"load": {"voltage": {"min": 0.95, "max": 1.05, "reference": "voltage_level"}}}
        """
        rules: Dict[str, Dict[str, ThresholdRule]] = {}
        for element_type, metrics in data.items():
            try:
                ElementType(element_type)
            except ValueError:
                raise errors.ValidationError.field("rules", f"Unknown element type '{element_type}'") from None
            rules[element_type] = {}
            for metric, bounds in metrics.items():
                lo, hi = bounds.get("min"), bounds.get("max")
                if lo is None and hi is None:
                    raise errors.ValidationError.field(
                        f"rules.{element_type}.{metric}", "A rule needs at least one of min/max"
                    )
                if lo is not None and hi is not None and float(lo) > float(hi):
                    raise errors.ValidationError.field(f"rules.{element_type}.{metric}", "min must not exceed max")
                rules[element_type][metric] = ThresholdRule(
                    min=None if lo is None else float(lo),
                    max=None if hi is None else float(hi),
                    reference=bounds.get("reference"),
                )
        return cls(rules, escalation_ratio)

    @classmethod
    def from_json_file(cls, path: str, escalation_ratio: float = DEFAULT_ESCALATION_RATIO) -> "ThresholdRuleSet":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        ruleset = cls.from_mapping(data, escalation_ratio)
        logger.info("Loaded threshold rules for %d element types from %s", len(ruleset.rules), path)
        return ruleset

    def rule_for(self, element_type: str, metric: str) -> Optional[ThresholdRule]:
        return self.rules.get(str(getattr(element_type, "value", element_type)), {}).get(metric)

    def severity_for(self, rule: ThresholdRule, value: float) -> Severity:
        r = self.escalation_ratio
        if rule.max is not None and value > rule.max * (1 + r):
            return Severity.CRITICAL
        if rule.min is not None and value < rule.min * (1 - r):
            return Severity.CRITICAL
        return Severity.HIGH

    def _breach(self, rule: ThresholdRule, value: float) -> Optional[Tuple[float, str]]:
        if rule.min is not None and value < rule.min:
            return rule.min, "min"
        if rule.max is not None and value > rule.max:
            return rule.max, "max"
        return None

    def evaluate(
        self,
        element_type: str,
        metric: str,
        value: float,
        reference_value: Optional[float] = None,
    ) -> Optional[Violation]:
        rule = self.rule_for(element_type, metric)
        if rule is None:
            return None

        normalized = float(value)
        if rule.reference and reference_value is not None and reference_value > 0:
            normalized = float(value) / float(reference_value)

        breach = self._breach(rule, normalized)
        if breach is None:
            return None
        bound, kind = breach
        return Violation(
            metric=metric,
            value=float(value),
            normalized_value=normalized,
            bound=bound,
            bound_kind=kind,
            severity=self.severity_for(rule, normalized),
            minimum=rule.min,
            maximum=rule.max,
        )

    def reference_for(self, element_type: str, metric: str, properties: Mapping[str, Any]) -> Optional[float]:
        rule = self.rule_for(element_type, metric)
        if rule is None or not rule.reference:
            return None
        ref = properties.get(rule.reference)
        try:
            return float(ref) if ref is not None else None
        except (TypeError, ValueError):
            return None
