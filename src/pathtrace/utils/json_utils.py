from __future__ import annotations

import json
import os
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any, Dict, Iterator, List


def write_json(path: Path, obj: Any, indent: int = 2) -> None:
    """
    Write an annotated tree (or any JSON document) next to its final path and
    swap it in, so a reader never sees a half-written file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(obj, ensure_ascii=False, indent=indent, default=str) + "\n"

    with NamedTemporaryFile("w", encoding="utf-8", dir=path.parent, suffix=".tmp", delete=False) as tmp:
        tmp.write(text)
    os.replace(tmp.name, path)


def read_json(path: Path) -> Any:
    with Path(path).open("r", encoding="utf-8") as f:
        return json.load(f)


def iter_step_lines(path: Path) -> Iterator[Dict[str, Any]]:
    """
    One captured step per line. Blank lines and non-object lines are skipped;
    broken JSON is reported with its line number.
    """
    path = Path(path)
    with path.open("r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                raise ValueError(f"{path}:{lineno}: invalid JSON ({exc.msg})") from exc
            if isinstance(record, dict):
                yield record


def read_records(path: Path) -> List[Any]:
    """
    Step exports come either as a JSON array, an object with a "steps" key,
    or JSON Lines; all three yield a flat list.
    """
    path = Path(path)
    if path.suffix == ".jsonl":
        return list(iter_step_lines(path))
    data = read_json(path)
    if isinstance(data, dict):
        data = data.get("steps") or []
    return data if isinstance(data, list) else []
