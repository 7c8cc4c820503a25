from __future__ import annotations

from typing import AbstractSet, Any, List, Optional, Tuple

from ..observe import NullObserver, ReconcileObserver
from ..schemas.annotated import (
    AnnotatedBranch,
    AnnotatedDecision,
    AnnotatedNode,
    AnnotatedOutcome,
    AnnotatedStep,
    MatchStatus,
)
from ..schemas.trace import Detail, ExecutedStep
from ..templates.normalize import action_matches, normalize_action, strict_equals
from ..templates.types import Branch, DecisionNode, Node, OutcomeNode, StepNode, is_set
from .normalize import NormalizedContext
from .pass1 import step_executed


def _status(taken: bool, current: bool) -> MatchStatus:
    if taken and current:
        return "current"
    return "taken" if taken else "not-taken"


def _plain(value: Any) -> Any:
    return value if is_set(value) else None


class _Annotator:
    def __init__(
        self,
        ctx: NormalizedContext,
        taken_ids: AbstractSet[str],
        current_id: Optional[str],
        observer: ReconcileObserver,
    ):
        self.ctx = ctx
        self.taken_ids = taken_ids
        self.current_id = current_id
        self.observer = observer

    def _step_payload(self, node: StepNode | DecisionNode) -> Tuple[Optional[ExecutedStep], List[Detail]]:
        key = node.match_key
        if not key and node.match_output_rule is not None:
            key = node.match_output_rule.step_name
        step = self.ctx.lookup(key)
        if step is None:
            return None, []
        data = step.model_copy(deep=True)
        return data, list(data.details)

    def _outcome_details(self, node: OutcomeNode) -> List[Detail]:
        wanted = normalize_action(node.match_action)
        out: List[Detail] = []
        for flat in self.ctx.all_details:
            detail = flat.detail
            operation = normalize_action(detail.operation)
            nested = detail.output.get("action") if isinstance(detail.output, dict) else None
            if (wanted and wanted in operation) or action_matches(nested, node.match_action):
                payload = detail.model_dump(by_alias=True)
                payload["parentStepName"] = flat.parent_step_name
                out.append(Detail.model_validate(payload))
        return out

    def _resolve(self, node: DecisionNode) -> Any:
        rule = node.activation_rule
        if rule.kind == "step_output":
            # Absent step or field means the gated condition did not occur.
            value = self.ctx.output_of(rule.step_name).get(rule.output_field, False)
        elif rule.kind == "trace_result":
            value = self.ctx.result_action
        else:
            return None
        self.observer.decision_resolved(node.id, rule.kind, value)
        return value

    def _branch_active(self, node: DecisionNode, branch: Branch, parent_active: bool, actual: Any) -> bool:
        if not parent_active:
            return False
        kind = node.activation_rule.kind
        has_value = is_set(branch.match_value)
        if kind == "none" or (not has_value and not branch.match_trace_action):
            return True
        if branch.match_trace_action and normalize_action(branch.match_trace_action) == self.ctx.result_action:
            return True
        if not has_value:
            return False
        if kind == "trace_result" and isinstance(branch.match_value, str):
            return normalize_action(branch.match_value) == actual
        return strict_equals(branch.match_value, actual)

    def visit(self, node: Node, active: bool) -> AnnotatedNode:
        if isinstance(node, OutcomeNode):
            taken = active and node.id in self.taken_ids
            return AnnotatedOutcome(
                id=node.id,
                display_name=node.display_name,
                layer=node.layer,
                status=node.status,
                match_action=node.match_action,
                match_status=_status(taken, node.id == self.current_id),
                details=self._outcome_details(node) if taken else [],
            )

        if isinstance(node, DecisionNode):
            actual = self._resolve(node)
            branches: List[AnnotatedBranch] = []
            for branch in node.branches:
                branch_active = self._branch_active(node, branch, active, actual)
                child = self.visit(branch.node, branch_active)
                branches.append(
                    AnnotatedBranch(
                        label=branch.label,
                        match_value=_plain(branch.match_value),
                        match_trace_action=branch.match_trace_action,
                        active=branch_active,
                        taken=child.is_taken,
                        node=child,
                    )
                )
            taken = any(b.taken for b in branches)
            step_data, details = None, []
            if taken and (node.match_key or node.match_output_rule) and step_executed(node, self.ctx):
                step_data, details = self._step_payload(node)
            return AnnotatedDecision(
                id=node.id,
                display_name=node.display_name,
                layer=node.layer,
                condition=node.condition,
                match_key=node.match_key,
                activation=node.activation_rule.kind,
                resolved_value=actual,
                match_status=_status(taken, False),
                step_data=step_data,
                details=details,
                branches=branches,
            )

        taken = active and node.id in self.taken_ids
        step_data, details = self._step_payload(node) if taken else (None, [])
        return AnnotatedStep(
            id=node.id,
            display_name=node.display_name,
            layer=node.layer,
            match_key=node.match_key,
            match_status=_status(taken, node.id == self.current_id),
            step_data=step_data,
            details=details,
            # Children stay reachable only through a taken step.
            children=[self.visit(child, active and taken) for child in node.children],
        )


def annotate(
    root: Node,
    ctx: NormalizedContext,
    taken_ids: AbstractSet[str],
    current_id: Optional[str],
    observer: Optional[ReconcileObserver] = None,
) -> AnnotatedNode:
    return _Annotator(ctx, taken_ids, current_id, observer or NullObserver()).visit(root, True)
