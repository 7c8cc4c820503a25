from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Literal, Optional, Set, Tuple, Union

from ..errors import TemplateInvalidError

OutcomeStatus = Literal["success", "error", "skipped"]
ActivationKind = Literal["step_output", "trace_result", "none"]

OUTCOME_STATUSES = ("success", "error", "skipped")
ACTIVATION_KINDS = ("step_output", "trace_result", "none")


class _Unset:
    """Marker for "no value declared", distinct from a declared null."""

    _instance: Optional["_Unset"] = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False

    def __copy__(self) -> "_Unset":
        return self

    def __deepcopy__(self, memo: Any) -> "_Unset":
        return self


UNSET: Any = _Unset()


def is_set(value: Any) -> bool:
    return value is not UNSET


@dataclass(frozen=True)
class OutputRule:
    step_name: str
    output_field: str
    expected_value: Any = UNSET


@dataclass(frozen=True)
class ActivationRule:
    kind: ActivationKind = "none"
    step_name: Optional[str] = None
    output_field: Optional[str] = None


NO_RULE = ActivationRule()


@dataclass(frozen=True)
class StepNode:
    id: str
    display_name: str
    layer: str = "service"
    match_key: Optional[str] = None
    match_output_rule: Optional[OutputRule] = None
    children: Tuple["Node", ...] = ()


@dataclass(frozen=True)
class Branch:
    label: str
    node: "Node"
    match_value: Any = UNSET
    match_trace_action: Optional[str] = None


@dataclass(frozen=True)
class DecisionNode:
    id: str
    display_name: str
    condition: str = ""
    branches: Tuple[Branch, ...] = ()
    activation_rule: ActivationRule = NO_RULE
    layer: str = "decision"
    # Set only on "virtual" decisions that also stand for an executed step.
    match_key: Optional[str] = None
    match_output_rule: Optional[OutputRule] = None


@dataclass(frozen=True)
class OutcomeNode:
    id: str
    display_name: str
    status: OutcomeStatus
    match_action: str
    layer: str = "outcome"


Node = Union[StepNode, DecisionNode, OutcomeNode]
NODE_TYPES = (StepNode, DecisionNode, OutcomeNode)


def child_nodes(node: Node) -> Tuple[Node, ...]:
    if isinstance(node, StepNode):
        return node.children
    if isinstance(node, DecisionNode):
        return tuple(b.node for b in node.branches)
    return ()


def iter_nodes(root: Node) -> Iterator[Node]:
    """Pre-order walk in declaration order."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(child_nodes(node)))


def _validate_rule(rule: Optional[OutputRule], template_id: str, node_id: str) -> None:
    if rule is None:
        return
    if not isinstance(rule, OutputRule):
        raise TemplateInvalidError("match_output_rule must be an OutputRule", template_id, node_id)
    if not rule.step_name or not rule.output_field:
        raise TemplateInvalidError("output rule requires step_name and output_field", template_id, node_id)


def validate_tree(root: Node, template_id: str) -> None:
    if not isinstance(root, NODE_TYPES):
        raise TemplateInvalidError(f"root must be a node, got {type(root).__name__}", template_id)
    seen: Set[str] = set()
    stack = [root]
    while stack:
        node = stack.pop()
        if not node.id:
            raise TemplateInvalidError("node without id", template_id)
        if node.id in seen:
            raise TemplateInvalidError(f"duplicate node id '{node.id}'", template_id, node.id)
        seen.add(node.id)

        if isinstance(node, StepNode):
            _validate_rule(node.match_output_rule, template_id, node.id)
            for child in node.children:
                if not isinstance(child, NODE_TYPES):
                    raise TemplateInvalidError("step child is not a node", template_id, node.id)
                stack.append(child)
        elif isinstance(node, DecisionNode):
            _validate_rule(node.match_output_rule, template_id, node.id)
            rule = node.activation_rule
            if rule.kind not in ACTIVATION_KINDS:
                raise TemplateInvalidError(f"unknown activation rule '{rule.kind}'", template_id, node.id)
            if rule.kind == "step_output" and not (rule.step_name and rule.output_field):
                raise TemplateInvalidError(
                    "step_output activation requires step_name and output_field", template_id, node.id
                )
            for idx, branch in enumerate(node.branches):
                if branch.node is None:
                    raise TemplateInvalidError(f"branch {idx} ('{branch.label}') has no node", template_id, node.id)
                if not isinstance(branch.node, NODE_TYPES):
                    raise TemplateInvalidError(f"branch {idx} node is not a node", template_id, node.id)
                stack.append(branch.node)
        elif isinstance(node, OutcomeNode):
            if node.status not in OUTCOME_STATUSES:
                raise TemplateInvalidError(f"invalid outcome status '{node.status}'", template_id, node.id)
            if not node.match_action:
                raise TemplateInvalidError("outcome requires match_action", template_id, node.id)


@dataclass(frozen=True)
class WorkflowTemplate:
    id: str
    name: str
    trigger_key: str
    root: Node
    provider: str = "default"
    endpoint: Optional[str] = None
    node_count: int = field(default=0, init=False, compare=False)

    def __post_init__(self) -> None:
        if not self.id:
            raise TemplateInvalidError("template requires an id")
        if not self.trigger_key:
            raise TemplateInvalidError("template requires a trigger_key", self.id)
        validate_tree(self.root, self.id)
        object.__setattr__(self, "node_count", sum(1 for _ in iter_nodes(self.root)))

    def find_node(self, node_id: str) -> Optional[Node]:
        return next((n for n in iter_nodes(self.root) if n.id == node_id), None)
