from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import yaml

from ..errors import TemplateInvalidError
from .compiler import compile_template
from .types import WorkflowTemplate

TEMPLATE_SUFFIXES = (".yml", ".yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"YAML file not found: {p}")
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise TemplateInvalidError(f"failed to parse YAML at {p}: {exc}") from exc
    return data or {}


def load_template(path: str | Path) -> WorkflowTemplate:
    p = Path(path)
    data = _load_yaml(p)
    try:
        return compile_template(data)
    except TemplateInvalidError as exc:
        raise TemplateInvalidError(f"{exc.detail} (in {p})", exc.template_id, exc.node_id) from exc


def load_templates(templates_dir: str | Path) -> List[WorkflowTemplate]:
    """
    Load every template file in a directory, sorted by file name so that
    registry order is stable across runs.
    """
    d = Path(templates_dir)
    if not d.is_dir():
        raise FileNotFoundError(f"Template directory not found: {d}")
    files = sorted(p for p in d.iterdir() if p.suffix in TEMPLATE_SUFFIXES)
    return [load_template(p) for p in files]
