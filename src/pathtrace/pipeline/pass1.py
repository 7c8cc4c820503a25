from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Tuple

from ..templates.normalize import action_matches, strict_equals
from ..templates.types import UNSET, DecisionNode, Node, OutcomeNode, OutputRule, StepNode, is_set
from .normalize import NormalizedContext


@dataclass(frozen=True)
class TakenSet:
    taken_ids: FrozenSet[str] = frozenset()
    current_id: Optional[str] = None
    # Every current-node candidate, best first; current_id == candidates[0].
    candidates: Tuple[str, ...] = ()


def output_rule_holds(rule: OutputRule, ctx: NormalizedContext) -> bool:
    if ctx.lookup(rule.step_name) is None:
        return False
    value = ctx.output_of(rule.step_name).get(rule.output_field, UNSET)
    if not is_set(value):
        return False
    if is_set(rule.expected_value):
        return strict_equals(value, rule.expected_value)
    return bool(value)


def step_executed(node: StepNode | DecisionNode, ctx: NormalizedContext) -> bool:
    """
    True when the node's match_key (or its bare name) is among the executed
    steps and its output rule, if any, holds.
    """
    if not node.match_key and node.match_output_rule is None:
        return False
    if node.match_key and ctx.lookup(node.match_key) is None:
        return False
    if node.match_output_rule is not None:
        return output_rule_holds(node.match_output_rule, ctx)
    return True


def outcome_reached(node: OutcomeNode, ctx: NormalizedContext) -> bool:
    return action_matches(ctx.result_action, node.match_action)


@dataclass
class _Walk:
    ctx: NormalizedContext
    taken: List[str] = field(default_factory=list)
    # (sort key, node id)
    ranked: List[Tuple[Tuple[int, int, int], str]] = field(default_factory=list)
    visits: int = 0

    def visit(self, node: Node, depth: int) -> bool:
        order = self.visits
        self.visits += 1

        if isinstance(node, OutcomeNode):
            if outcome_reached(node, self.ctx):
                self.taken.append(node.id)
                # Outcomes outrank any step; among outcomes the first visited wins.
                self.ranked.append(((1, 0, -order), node.id))
                return True
            return False

        if isinstance(node, DecisionNode):
            any_taken = False
            for branch in node.branches:
                if self.visit(branch.node, depth + 1):
                    any_taken = True
            if any_taken:
                self.taken.append(node.id)
            return any_taken

        taken = step_executed(node, self.ctx)
        if taken:
            self.taken.append(node.id)
            # Deeper wins; on equal depth the later visit wins.
            self.ranked.append(((0, depth, order), node.id))
        for child in node.children:
            if self.visit(child, depth + 1):
                taken = True
        return taken


def find_taken(root: Node, ctx: NormalizedContext) -> TakenSet:
    walk = _Walk(ctx=ctx)
    walk.visit(root, 0)
    candidates = tuple(node_id for _, node_id in sorted(walk.ranked, key=lambda r: r[0], reverse=True))
    return TakenSet(
        taken_ids=frozenset(walk.taken),
        current_id=candidates[0] if candidates else None,
        candidates=candidates,
    )
