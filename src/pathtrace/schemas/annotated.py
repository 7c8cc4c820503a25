from __future__ import annotations

from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .trace import Detail, ExecutedStep

MatchStatus = Literal["taken", "current", "not-taken"]


class _OutputModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class _AnnotatedBase(_OutputModel):
    id: str
    display_name: str
    layer: str
    match_status: MatchStatus = "not-taken"
    step_data: Optional[ExecutedStep] = None
    details: List[Detail] = []

    @property
    def is_taken(self) -> bool:
        return self.match_status in ("taken", "current")


class AnnotatedStep(_AnnotatedBase):
    kind: Literal["step"] = "step"
    match_key: Optional[str] = None
    children: List["AnnotatedNode"] = []


class AnnotatedOutcome(_AnnotatedBase):
    kind: Literal["outcome"] = "outcome"
    status: str
    match_action: str
    children: List["AnnotatedNode"] = []


class AnnotatedBranch(_OutputModel):
    label: str
    # None when the template declared no value.
    match_value: Optional[Any] = None
    match_trace_action: Optional[str] = None
    active: bool = False
    taken: bool = False
    node: "AnnotatedNode"


class AnnotatedDecision(_AnnotatedBase):
    kind: Literal["decision"] = "decision"
    condition: str = ""
    match_key: Optional[str] = None
    activation: str = "none"
    resolved_value: Optional[Any] = None
    branches: List[AnnotatedBranch] = []


AnnotatedNode = Annotated[
    Union[AnnotatedStep, AnnotatedDecision, AnnotatedOutcome],
    Field(discriminator="kind"),
]


class AnnotatedWorkflow(_OutputModel):
    id: str
    name: str
    trigger_key: str
    provider: str
    root: AnnotatedNode
    result_action: str = ""
    current_id: Optional[str] = None
    taken_path: List[str] = []
    warnings: List[str] = []


AnnotatedStep.model_rebuild()
AnnotatedOutcome.model_rebuild()
AnnotatedBranch.model_rebuild()
AnnotatedDecision.model_rebuild()
AnnotatedWorkflow.model_rebuild()
