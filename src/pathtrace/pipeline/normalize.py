from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from ..observe import NullObserver, ReconcileObserver
from ..schemas.trace import Detail, ExecutedStep, Trace
from ..templates.normalize import bare_name, normalize_action
from .classifiers import DEFAULT_CLASSIFIER, ResultClassifier


@dataclass(frozen=True)
class FlatDetail:
    parent_step_name: str
    detail: Detail


@dataclass
class NormalizedContext:
    step_map: Dict[str, ExecutedStep] = field(default_factory=dict)
    output_map: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    result_action: str = ""
    all_details: List[FlatDetail] = field(default_factory=list)
    ambiguous_keys: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def lookup(self, key: Optional[str]) -> Optional[ExecutedStep]:
        """Exact key first, then the bare operation name of the key."""
        if not key:
            return None
        step = self.step_map.get(key)
        if step is None:
            step = self.step_map.get(bare_name(key))
        return step

    def output_of(self, step_name: Optional[str]) -> Dict[str, Any]:
        if not step_name:
            return {}
        out = self.output_map.get(step_name)
        if out is None:
            out = self.output_map.get(bare_name(step_name))
        return out or {}


def normalize(
    steps: Iterable[ExecutedStep],
    trace: Optional[Trace],
    classifier: Optional[ResultClassifier] = None,
    observer: Optional[ReconcileObserver] = None,
) -> NormalizedContext:
    classifier = classifier or DEFAULT_CLASSIFIER
    observer = observer or NullObserver()
    trace = trace or Trace()
    ctx = NormalizedContext()

    # key -> qualified name of the step currently holding it
    owners: Dict[str, str] = {}
    qualified_keys: Set[str] = set()

    def _register(key: str, step: ExecutedStep, is_alias: bool) -> None:
        previous = owners.get(key)
        if previous is not None and previous != step.qualified_name:
            if key not in ctx.ambiguous_keys:
                ctx.ambiguous_keys.append(key)
            ctx.warnings.append(
                f"ambiguous step key '{key}': '{step.qualified_name}' and '{previous}' both match"
            )
            if is_alias and key in qualified_keys:
                # A bare alias never displaces a fully-qualified entry.
                observer.ambiguous_step_key(key, previous, previous)
                return
            observer.ambiguous_step_key(key, previous, step.qualified_name)
        owners[key] = step.qualified_name
        ctx.step_map[key] = step
        ctx.output_map[key] = step.output or {}

    for step in steps or []:
        if not isinstance(step, ExecutedStep) or not step.qualified_name:
            continue
        name = step.qualified_name
        _register(name, step, is_alias=False)
        qualified_keys.add(name)
        short = bare_name(name)
        if short and short != name:
            _register(short, step, is_alias=True)
        for detail in step.details or []:
            ctx.all_details.append(FlatDetail(parent_step_name=name, detail=detail))

    if trace.result_action and trace.result_action.strip():
        ctx.result_action = normalize_action(trace.result_action)
    else:
        ctx.result_action = classifier.classify(trace.status, trace.response_body)

    observer.context_built(sorted(ctx.step_map.keys()), ctx.result_action)
    return ctx
