from __future__ import annotations

from typing import Any, Iterable, Iterator, List, Optional, Sequence

from pydantic import ValidationError

from ..observe import NullObserver, ReconcileObserver
from ..schemas.annotated import AnnotatedDecision, AnnotatedNode, AnnotatedStep, AnnotatedWorkflow
from ..schemas.trace import ExecutedStep, Trace
from ..templates.registry import TemplateRegistry
from ..templates.types import WorkflowTemplate
from .classifiers import ClassifierSet, ResultClassifier
from .normalize import normalize
from .pass1 import find_taken
from .pass2 import annotate


def iter_annotated(root: AnnotatedNode) -> Iterator[AnnotatedNode]:
    """Pre-order walk of an annotated tree, branches in declaration order."""
    stack: List[AnnotatedNode] = [root]
    while stack:
        node = stack.pop()
        yield node
        if isinstance(node, AnnotatedDecision):
            stack.extend(reversed([b.node for b in node.branches]))
        elif isinstance(node, AnnotatedStep):
            stack.extend(reversed(node.children))


def taken_path(root: AnnotatedNode) -> List[str]:
    return [n.id for n in iter_annotated(root) if n.is_taken]


def find_current(root: AnnotatedNode) -> Optional[str]:
    return next((n.id for n in iter_annotated(root) if n.match_status == "current"), None)


def coerce_steps(raw_steps: Optional[Iterable[Any]]) -> List[ExecutedStep]:
    """
    Build ExecutedStep models from captured records, skipping records that
    cannot be read as a step at all.
    """
    steps: List[ExecutedStep] = []
    for raw in raw_steps or []:
        if isinstance(raw, ExecutedStep):
            steps.append(raw)
            continue
        if not isinstance(raw, dict):
            continue
        try:
            steps.append(ExecutedStep.model_validate(raw))
        except ValidationError:
            continue
    return steps


def coerce_trace(raw_trace: Any) -> Trace:
    if isinstance(raw_trace, Trace):
        return raw_trace
    if not isinstance(raw_trace, dict):
        return Trace()
    try:
        return Trace.model_validate(raw_trace)
    except ValidationError:
        return Trace()


def reconcile(
    template: WorkflowTemplate,
    steps: Sequence[ExecutedStep],
    trace: Optional[Trace],
    classifier: Optional[ResultClassifier] = None,
    observer: Optional[ReconcileObserver] = None,
) -> AnnotatedWorkflow:
    observer = observer or NullObserver()
    ctx = normalize(steps, trace, classifier, observer)
    taken = find_taken(template.root, ctx)
    warnings = list(ctx.warnings)

    current_id = taken.current_id
    root = annotate(template.root, ctx, taken.taken_ids, current_id, observer)

    if current_id is not None and find_current(root) is None:
        # The pass-1 winner sits under a branch pass 2 deactivated; promote the
        # best-ranked candidate that is actually reachable.
        reachable = set(taken_path(root))
        fallback = next((c for c in taken.candidates if c in reachable), None)
        if fallback is not None:
            observer.current_fallback(current_id, fallback)
            root = annotate(template.root, ctx, taken.taken_ids, fallback, NullObserver())
        current_id = fallback

    observer.current_selected(current_id)
    return AnnotatedWorkflow(
        id=template.id,
        name=template.name,
        trigger_key=template.trigger_key,
        provider=template.provider,
        root=root,
        result_action=ctx.result_action,
        current_id=current_id,
        taken_path=taken_path(root),
        warnings=warnings,
    )


def reconcile_trace(
    registry: TemplateRegistry,
    trace: Trace,
    steps: Sequence[ExecutedStep],
    classifiers: Optional[ClassifierSet] = None,
    observer: Optional[ReconcileObserver] = None,
) -> AnnotatedWorkflow:
    """
    Resolve the template for a trace and reconcile it. Raises
    UnknownTriggerError when no template is registered for the trigger.
    """
    template = registry.resolve(trace, steps)
    classifier = (classifiers or ClassifierSet()).for_provider(template.provider)
    return reconcile(template, steps, trace, classifier, observer)
