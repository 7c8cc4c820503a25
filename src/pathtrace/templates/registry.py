from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from ..errors import TemplateInvalidError, UnknownTriggerError
from ..schemas.trace import ExecutedStep, Trace
from .normalize import endpoint_tail, strict_equals
from .types import WorkflowTemplate


@dataclass(frozen=True)
class TriggerAlias:
    """
    Remaps a generic endpoint (e.g. "custom-object-created") to a specific
    trigger when a discriminator field of the inbound payload equals `equals`.
    """

    endpoint: str
    fields: Tuple[str, ...]
    equals: Any
    trigger_key: str


def _present(value: Any) -> bool:
    return value is not None and value != ""


class TemplateRegistry:
    """
    Read-only mapping of trigger key -> template. Populated once; lookups do
    not mutate anything, so concurrent readers need no locking.
    """

    def __init__(self, templates: Iterable[WorkflowTemplate], aliases: Iterable[TriggerAlias] = ()):
        self._templates: Dict[str, WorkflowTemplate] = {}
        for template in templates:
            key = template.trigger_key
            if key in self._templates:
                raise TemplateInvalidError(
                    f"duplicate trigger key '{key}' (also used by '{self._templates[key].id}')", template.id
                )
            self._templates[key] = template
        self._aliases: Tuple[TriggerAlias, ...] = tuple(aliases)
        # endpoint -> trigger keys of every template declaring it
        self._by_endpoint: Dict[str, List[str]] = {}
        for template in self._templates.values():
            if template.endpoint:
                self._by_endpoint.setdefault(template.endpoint.rstrip("/"), []).append(template.trigger_key)

    def shared_endpoints(self) -> Dict[str, List[str]]:
        """Endpoints declared by more than one template; these never resolve on their own."""
        return {ep: keys for ep, keys in self._by_endpoint.items() if len(keys) > 1}

    def __contains__(self, trigger_key: object) -> bool:
        return trigger_key in self._templates

    def __len__(self) -> int:
        return len(self._templates)

    def __iter__(self) -> Iterator[WorkflowTemplate]:
        return iter(self._templates.values())

    def keys(self) -> List[str]:
        return list(self._templates.keys())

    @property
    def aliases(self) -> Tuple[TriggerAlias, ...]:
        return self._aliases

    def find(self, trigger_key: Optional[str]) -> Optional[WorkflowTemplate]:
        if not trigger_key:
            return None
        return self._templates.get(trigger_key)

    def get(self, trigger_key: Optional[str]) -> WorkflowTemplate:
        template = self.find(trigger_key)
        if template is None:
            raise UnknownTriggerError(trigger_key)
        return template

    def _discriminator(self, alias: TriggerAlias, trace: Trace, steps: Sequence[ExecutedStep]) -> Any:
        # Request body first, then the first recorded step (the webhook receipt).
        body = trace.request_body or {}
        for name in alias.fields:
            if _present(body.get(name)):
                return body[name]
        if steps:
            output = steps[0].output or {}
            for name in alias.fields:
                if _present(output.get(name)):
                    return output[name]
        return None

    def resolve_trigger(self, trace: Trace, steps: Sequence[ExecutedStep] = ()) -> Optional[str]:
        if trace.trigger_key and trace.trigger_key in self._templates:
            return trace.trigger_key

        name = endpoint_tail(trace.endpoint)
        for alias in self._aliases:
            if alias.endpoint != name:
                continue
            if strict_equals(self._discriminator(alias, trace, steps), alias.equals):
                return alias.trigger_key

        if name in self._templates:
            return name

        if trace.endpoint:
            keys = self._by_endpoint.get(trace.endpoint.rstrip("/"), [])
            # A shared endpoint needs the trigger name to pick a template.
            if len(keys) == 1:
                return keys[0]

        return trace.trigger_key or name or None

    def resolve(self, trace: Trace, steps: Sequence[ExecutedStep] = ()) -> WorkflowTemplate:
        return self.get(self.resolve_trigger(trace, steps))
