from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..errors import ConfigError
from ..templates.normalize import normalize_action, strict_equals
from ..templates.types import UNSET, is_set

RULE_CONDITIONS = ("positive", "zero", "present", "truthy", "equals")
ERROR_ACTION = "error"
PARTIAL_ACTION = "partial"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True)
class ClassifierRule:
    body_field: str
    when: str
    action: str
    value: Any = UNSET

    def applies(self, body: Mapping[str, Any]) -> bool:
        value = body.get(self.body_field, UNSET)
        if not is_set(value):
            return False
        if self.when == "positive":
            return _is_number(value) and value > 0
        if self.when == "zero":
            return _is_number(value) and value == 0
        if self.when == "present":
            return value is not None and value != ""
        if self.when == "truthy":
            return bool(value)
        if self.when == "equals":
            return strict_equals(value, self.value)
        return False


@dataclass(frozen=True)
class ResultClassifier:
    """
    Derives a lowercase result action from a trace's status and response body
    when the capture did not record one. Precedence:
      1) response_body.action
      2) completed + success -> first matching field rule, else default_success_action
      3) failed, or success explicitly false -> "error"
      4) partial -> "partial"
      5) "" (matches no outcome)
    """

    name: str = "default"
    rules: Tuple[ClassifierRule, ...] = ()
    default_success_action: str = "success"

    def classify(self, status: Optional[str], response_body: Optional[Mapping[str, Any]]) -> str:
        body: Mapping[str, Any] = response_body if isinstance(response_body, Mapping) else {}
        status_norm = normalize_action(status)

        explicit = body.get("action")
        if isinstance(explicit, str) and explicit.strip():
            return normalize_action(explicit)

        if status_norm == "completed" and body.get("success"):
            for rule in self.rules:
                if rule.applies(body):
                    return normalize_action(rule.action)
            return normalize_action(self.default_success_action)

        if status_norm == "failed" or body.get("success") is False:
            return ERROR_ACTION
        if status_norm == "partial":
            return PARTIAL_ACTION
        return ""


DEFAULT_CLASSIFIER = ResultClassifier()


def _build_rule(provider: str, raw: Any, idx: int) -> ClassifierRule:
    if not isinstance(raw, dict):
        raise ConfigError(f"providers.{provider}.rules[{idx}] must be a mapping")
    field_name = raw.get("field")
    action = raw.get("action")
    when = raw.get("when") or "present"
    if not field_name or not action:
        raise ConfigError(f"providers.{provider}.rules[{idx}] requires 'field' and 'action'")
    if when not in RULE_CONDITIONS:
        raise ConfigError(
            f"providers.{provider}.rules[{idx}].when must be one of {', '.join(RULE_CONDITIONS)}"
        )
    if when == "equals" and "value" not in raw:
        raise ConfigError(f"providers.{provider}.rules[{idx}] uses 'equals' without 'value'")
    return ClassifierRule(
        body_field=str(field_name),
        when=when,
        action=str(action),
        value=raw["value"] if "value" in raw else UNSET,
    )


def build_classifier(provider: str, settings: Optional[Dict[str, Any]]) -> ResultClassifier:
    settings = settings or {}
    raw_rules = settings.get("rules") or []
    if not isinstance(raw_rules, list):
        raise ConfigError(f"providers.{provider}.rules must be a list")
    rules: List[ClassifierRule] = [_build_rule(provider, r, i) for i, r in enumerate(raw_rules)]
    return ResultClassifier(
        name=provider,
        rules=tuple(rules),
        default_success_action=str(settings.get("default_success_action", "success") or ""),
    )


@dataclass
class ClassifierSet:
    classifiers: Dict[str, ResultClassifier] = field(default_factory=dict)

    def for_provider(self, provider: Optional[str]) -> ResultClassifier:
        if provider and provider in self.classifiers:
            return self.classifiers[provider]
        return self.classifiers.get("default", DEFAULT_CLASSIFIER)


def build_classifiers(providers: Optional[Dict[str, Any]]) -> ClassifierSet:
    providers = providers or {}
    if not isinstance(providers, dict):
        raise ConfigError("providers must be a mapping")
    return ClassifierSet(
        classifiers={name: build_classifier(name, settings) for name, settings in providers.items()}
    )
