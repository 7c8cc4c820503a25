from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..errors import TemplateInvalidError
from .types import (
    NO_RULE,
    UNSET,
    ActivationRule,
    Branch,
    DecisionNode,
    Node,
    OutcomeNode,
    OutputRule,
    StepNode,
    WorkflowTemplate,
    iter_nodes,
)


def _compile_output_rule(raw: Any, template_id: str, node_id: str) -> Optional[OutputRule]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise TemplateInvalidError("match_output must be a mapping", template_id, node_id)
    return OutputRule(
        step_name=str(raw.get("step") or ""),
        output_field=str(raw.get("field") or ""),
        expected_value=raw["equals"] if "equals" in raw else UNSET,
    )


def _compile_activation(raw: Any, template_id: str, node_id: str) -> ActivationRule:
    if raw is None:
        return NO_RULE
    if not isinstance(raw, dict):
        raise TemplateInvalidError("activation must be a mapping", template_id, node_id)
    kind = raw.get("from") or "none"
    return ActivationRule(kind=kind, step_name=raw.get("step"), output_field=raw.get("field"))


def _compile_branch(raw: Any, template_id: str, node_id: str, idx: int) -> Branch:
    if not isinstance(raw, dict):
        raise TemplateInvalidError(f"branch {idx} must be a mapping", template_id, node_id)
    label = str(raw.get("label") or f"branch {idx}")
    if raw.get("node") is None:
        raise TemplateInvalidError(f"branch {idx} ('{label}') has no node", template_id, node_id)
    return Branch(
        label=label,
        node=compile_node(raw["node"], template_id),
        match_value=raw["match_value"] if "match_value" in raw else UNSET,
        match_trace_action=raw.get("match_trace_action"),
    )


def compile_node(raw: Any, template_id: str) -> Node:
    if not isinstance(raw, dict):
        raise TemplateInvalidError(f"node must be a mapping, got {type(raw).__name__}", template_id)
    node_id = str(raw.get("id") or "")
    if not node_id:
        raise TemplateInvalidError("node without id", template_id)
    kind = raw.get("kind")
    display_name = str(raw.get("name") or node_id)

    if kind == "step":
        children = raw.get("children") or []
        if not isinstance(children, list):
            raise TemplateInvalidError("children must be a list", template_id, node_id)
        return StepNode(
            id=node_id,
            display_name=display_name,
            layer=str(raw.get("layer") or "service"),
            match_key=raw.get("match_key"),
            match_output_rule=_compile_output_rule(raw.get("match_output"), template_id, node_id),
            children=tuple(compile_node(c, template_id) for c in children),
        )
    if kind == "decision":
        branches = raw.get("branches")
        if branches is None:
            raise TemplateInvalidError("decision requires branches", template_id, node_id)
        if not isinstance(branches, list):
            raise TemplateInvalidError("branches must be a list", template_id, node_id)
        return DecisionNode(
            id=node_id,
            display_name=display_name,
            condition=str(raw.get("condition") or ""),
            branches=tuple(_compile_branch(b, template_id, node_id, i) for i, b in enumerate(branches)),
            activation_rule=_compile_activation(raw.get("activation"), template_id, node_id),
            layer=str(raw.get("layer") or "decision"),
            match_key=raw.get("match_key"),
            match_output_rule=_compile_output_rule(raw.get("match_output"), template_id, node_id),
        )
    if kind == "outcome":
        if raw.get("children"):
            raise TemplateInvalidError("outcome nodes cannot have children", template_id, node_id)
        return OutcomeNode(
            id=node_id,
            display_name=display_name,
            status=raw.get("status") or "success",
            match_action=str(raw.get("match_action") or ""),
            layer=str(raw.get("layer") or "outcome"),
        )
    raise TemplateInvalidError(f"unknown node kind {kind!r}", template_id, node_id)


def compile_template(data: Dict[str, Any]) -> WorkflowTemplate:
    if not isinstance(data, dict):
        raise TemplateInvalidError("template document must be a mapping")
    template_id = str(data.get("id") or "")
    if not template_id:
        raise TemplateInvalidError("template requires an id")
    if data.get("root") is None:
        raise TemplateInvalidError("template requires a root node", template_id)
    return WorkflowTemplate(
        id=template_id,
        name=str(data.get("name") or template_id),
        trigger_key=str(data.get("trigger_key") or template_id),
        root=compile_node(data["root"], template_id),
        provider=str(data.get("provider") or "default"),
        endpoint=data.get("endpoint"),
    )


def template_debug_summary(template: WorkflowTemplate) -> Dict[str, Any]:
    kinds: Dict[str, int] = {"step": 0, "decision": 0, "outcome": 0}
    match_keys: List[str] = []
    outcomes: List[str] = []
    for node in iter_nodes(template.root):
        if isinstance(node, StepNode):
            kinds["step"] += 1
            if node.match_key:
                match_keys.append(node.match_key)
        elif isinstance(node, DecisionNode):
            kinds["decision"] += 1
        else:
            kinds["outcome"] += 1
            outcomes.append(node.match_action)
    return {
        "id": template.id,
        "trigger_key": template.trigger_key,
        "provider": template.provider,
        "endpoint": template.endpoint,
        "node_counts": kinds,
        "match_keys": sorted(set(match_keys)),
        "outcome_actions": outcomes,
    }
