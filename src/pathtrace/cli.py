from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv
from rich.console import Console

from .config import AppConfig, load_config
from .errors import ConfigError, TemplateInvalidError, UnknownTriggerError
from .observe import ConsoleObserver
from .pipeline.reconciliation import coerce_steps, coerce_trace, reconcile, reconcile_trace
from .templates.compiler import template_debug_summary
from .templates.registry import TemplateRegistry
from .utils.json_utils import read_json, read_records, write_json

load_dotenv()  # automatically load variables from .env if present
console = Console()


def _load_config_or_exit(config_path: str | None) -> AppConfig:
    try:
        return load_config(config_path)
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(2)
    except ConfigError as e:
        console.print(f"[red]Config error:[/red] {e}")
        sys.exit(2)


def _load_registry_or_exit(cfg: AppConfig) -> TemplateRegistry:
    try:
        return cfg.registry()
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(2)
    except (ConfigError, TemplateInvalidError) as e:
        console.print(f"[red]Template error:[/red] {e}")
        sys.exit(2)


def cmd_templates(args: argparse.Namespace) -> int:
    cfg = _load_config_or_exit(args.config)
    registry = _load_registry_or_exit(cfg)
    console.print(f"[bold]Templates:[/bold] {len(registry)} in {cfg.templates_dir}")
    for template in registry:
        summary = template_debug_summary(template)
        counts = summary["node_counts"]
        console.print(
            f"  [bold green]{template.trigger_key}[/bold green] ({template.provider}) "
            f"steps={counts['step']} decisions={counts['decision']} outcomes={counts['outcome']}"
            + (f" endpoint={template.endpoint}" if template.endpoint else "")
        )
    for alias in registry.aliases:
        console.print(
            f"  [cyan]alias[/cyan] {alias.endpoint} + {'/'.join(alias.fields)}={alias.equals!r} -> {alias.trigger_key}"
        )
    for endpoint, keys in registry.shared_endpoints().items():
        console.print(f"  [dim]shared endpoint[/dim] {endpoint} ({', '.join(keys)}): needs a trigger name")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    cfg = _load_config_or_exit(args.config)
    registry = _load_registry_or_exit(cfg)
    try:
        cfg.classifiers()
    except ConfigError as e:
        console.print(f"[red]Config error:[/red] {e}")
        return 2
    missing = [a.trigger_key for a in registry.aliases if a.trigger_key not in registry]
    for key in missing:
        console.print(f"[yellow]Alias target has no template:[/yellow] {key}")
    console.print(f"[bold green]OK[/bold green] {len(registry)} templates valid")
    return 0


def _read_trace_file(path: Path) -> Dict[str, Any]:
    data = read_json(path)
    return data if isinstance(data, dict) else {}


def cmd_reconcile(args: argparse.Namespace) -> int:
    cfg = _load_config_or_exit(args.config)
    registry = _load_registry_or_exit(cfg)
    try:
        classifiers = cfg.classifiers()
    except ConfigError as e:
        console.print(f"[red]Config error:[/red] {e}")
        return 2

    trace_path = Path(args.trace)
    if not trace_path.exists():
        console.print(f"[red]Missing trace file:[/red] {trace_path}")
        return 2
    try:
        trace_doc = _read_trace_file(trace_path)
        raw_trace = trace_doc.get("trace", trace_doc)
        if args.steps:
            raw_steps = read_records(Path(args.steps))
        else:
            raw_steps = trace_doc.get("steps") or []
    except (OSError, ValueError) as e:
        console.print(f"[red]Failed to read trace input:[/red] {e}")
        return 1

    trace = coerce_trace(raw_trace)
    steps = coerce_steps(raw_steps)
    observer = ConsoleObserver(verbose=args.verbose)

    try:
        if args.trigger:
            template = registry.get(args.trigger)
            result = reconcile(template, steps, trace, classifiers.for_provider(template.provider), observer)
        else:
            result = reconcile_trace(registry, trace, steps, classifiers, observer)
    except UnknownTriggerError as e:
        console.print(f"[yellow]No diagnostic available for this trace:[/yellow] {e}")
        return 2

    console.print(f"[bold]Template:[/bold] {result.name} ({result.trigger_key})")
    console.print(f"[bold]Steps:[/bold] {len(steps)}")
    console.print(f"[bold]Result action:[/bold] {result.result_action or '-'}")
    console.print(f"[bold]Current node:[/bold] {result.current_id or '-'}")
    console.print(f"[bold]Taken path:[/bold] {' -> '.join(result.taken_path) or '-'}")
    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")

    if args.out:
        out_path = Path(args.out)
        write_json(out_path, result.to_json_dict(), indent=cfg.output_indent)
        console.print(f"[bold]Annotated tree:[/bold] {out_path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pathtrace",
        description="Reconcile captured automation traces against workflow templates.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_templates = sub.add_parser("templates", help="List registered workflow templates")
    p_templates.add_argument("--config", type=str, help="Path to pathtrace.yml")
    p_templates.set_defaults(func=cmd_templates)

    p_validate = sub.add_parser("validate", help="Load and validate all templates and provider rules")
    p_validate.add_argument("--config", type=str, help="Path to pathtrace.yml")
    p_validate.set_defaults(func=cmd_validate)

    p_rec = sub.add_parser("reconcile", help="Reconcile one exported trace")
    p_rec.add_argument("--config", type=str, help="Path to pathtrace.yml")
    p_rec.add_argument("--trace", type=str, required=True, help="Trace JSON (optionally with a 'steps' list)")
    p_rec.add_argument("--steps", type=str, help="Steps as JSON array or JSON Lines")
    p_rec.add_argument("--trigger", type=str, help="Use this trigger key instead of resolving one")
    p_rec.add_argument("--out", type=str, help="Write the annotated tree as JSON")
    p_rec.add_argument("--verbose", action="store_true", help="Print decision diagnostics")
    p_rec.set_defaults(func=cmd_reconcile)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except SystemExit:
        raise
    except Exception as e:
        console.print(f"[red]Unexpected error:[/red] {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
