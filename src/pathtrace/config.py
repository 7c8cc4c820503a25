from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .errors import ConfigError
from .pipeline.classifiers import ClassifierSet, build_classifiers
from .templates.loader import load_templates
from .templates.registry import TemplateRegistry, TriggerAlias

DEFAULT_CONFIG_PATH = Path("config/pathtrace.yml")
CONFIG_ENV_VAR = "PATHTRACE_CONFIG"


@dataclass
class AppConfig:
    raw: Dict[str, Any]
    # Relative paths in the file resolve against the file's own directory.
    base_dir: Path = field(default_factory=Path.cwd)

    @property
    def templates_dir(self) -> Path:
        value = (self.raw.get("templates") or {}).get("dir", "templates")
        p = Path(str(value))
        return p if p.is_absolute() else self.base_dir / p

    @property
    def output_indent(self) -> int:
        return int((self.raw.get("output") or {}).get("indent", 2))

    def trigger_aliases(self) -> List[TriggerAlias]:
        raw_aliases = (self.raw.get("triggers") or {}).get("aliases") or []
        if not isinstance(raw_aliases, list):
            raise ConfigError("triggers.aliases must be a list")
        aliases: List[TriggerAlias] = []
        for idx, item in enumerate(raw_aliases):
            if not isinstance(item, dict):
                raise ConfigError(f"triggers.aliases[{idx}] must be a mapping")
            fields = item.get("fields") or item.get("field")
            if isinstance(fields, str):
                fields = [fields]
            if not item.get("endpoint") or not item.get("trigger") or not fields or "equals" not in item:
                raise ConfigError(
                    f"triggers.aliases[{idx}] requires 'endpoint', 'field(s)', 'equals' and 'trigger'"
                )
            aliases.append(
                TriggerAlias(
                    endpoint=str(item["endpoint"]),
                    fields=tuple(str(f) for f in fields),
                    equals=item["equals"],
                    trigger_key=str(item["trigger"]),
                )
            )
        return aliases

    def classifiers(self) -> ClassifierSet:
        return build_classifiers(self.raw.get("providers"))

    def registry(self) -> TemplateRegistry:
        return TemplateRegistry(load_templates(self.templates_dir), self.trigger_aliases())


def resolve_config_path(path: str | Path | None = None) -> Path:
    if path:
        return Path(path)
    env_value = os.environ.get(CONFIG_ENV_VAR)
    return Path(env_value) if env_value else DEFAULT_CONFIG_PATH


def load_config(path: str | Path | None = None) -> AppConfig:
    p = resolve_config_path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config file not found: {p}")
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse YAML at {p}: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config at {p} must be a mapping")
    return AppConfig(raw=data, base_dir=p.resolve().parent)
