from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..templates.normalize import NAMESPACE_SEP


class _CaptureModel(BaseModel):
    # Capture stores emit camelCase; unknown fields are preserved for display.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class Detail(_CaptureModel):
    operation: Optional[str] = None
    output: Optional[Any] = None

    @field_validator("operation", mode="before")
    @classmethod
    def _operation_text(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        return str(v)


class ExecutedStep(_CaptureModel):
    qualified_name: str
    output: Dict[str, Any] = {}
    details: List[Detail] = []

    @model_validator(mode="before")
    @classmethod
    def _qualified_name_from_parts(cls, data: Any) -> Any:
        """
        Accepts the three observed capture shapes:
          - {"qualifiedName": "svc:op"}
          - {"stepName": "op"}
          - {"serviceName": "svc", "functionName": "op"}
        """
        if not isinstance(data, dict):
            return data
        if data.get("qualifiedName") or data.get("qualified_name"):
            return data
        service = data.get("serviceName") or data.get("service_name")
        function = data.get("functionName") or data.get("function_name")
        step_name = data.get("stepName") or data.get("step_name")
        if service and function:
            name = f"{service}{NAMESPACE_SEP}{function}"
        else:
            name = step_name or function or ""
        return {**data, "qualifiedName": str(name)}

    @field_validator("output", mode="before")
    @classmethod
    def _output_mapping(cls, v: Any) -> Dict[str, Any]:
        return v if isinstance(v, dict) else {}

    @field_validator("details", mode="before")
    @classmethod
    def _details_list(cls, v: Any) -> List[Any]:
        if not isinstance(v, list):
            return []
        return [d for d in v if isinstance(d, (dict, Detail))]


class Trace(_CaptureModel):
    status: Optional[str] = None
    result_action: Optional[str] = None
    response_body: Optional[Dict[str, Any]] = None
    request_body: Optional[Dict[str, Any]] = None
    endpoint: Optional[str] = None
    trigger_key: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _trigger_name_alias(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("triggerKey") and data.get("triggerName"):
            return {**data, "triggerKey": data["triggerName"]}
        return data

    @field_validator("response_body", "request_body", mode="before")
    @classmethod
    def _body_mapping(cls, v: Any) -> Optional[Dict[str, Any]]:
        return v if isinstance(v, dict) else None

    @field_validator("status", "result_action", "endpoint", "trigger_key", mode="before")
    @classmethod
    def _text_or_none(cls, v: Any) -> Optional[str]:
        if v is None or isinstance(v, (dict, list)):
            return None
        return str(v)
