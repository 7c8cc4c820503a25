from __future__ import annotations

from typing import Optional


class PathtraceError(Exception):
    pass


class TemplateInvalidError(PathtraceError, ValueError):
    """
    A workflow template breaks a structural rule (duplicate node ids,
    a branch without a node, an unknown node kind, ...). Raised while the
    template is being built, never during reconciliation.
    """

    def __init__(self, message: str, template_id: Optional[str] = None, node_id: Optional[str] = None):
        self.template_id = template_id
        self.node_id = node_id
        self.detail = message
        prefix = f"template '{template_id}': " if template_id else ""
        super().__init__(f"{prefix}{message}")


class UnknownTriggerError(PathtraceError, LookupError):
    def __init__(self, trigger_key: Optional[str]):
        self.trigger_key = trigger_key
        super().__init__(f"No workflow template registered for trigger: {trigger_key!r}")


class ConfigError(PathtraceError):
    pass
