from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence

from rich.console import Console


class ReconcileObserver(Protocol):
    def context_built(self, step_keys: Sequence[str], result_action: str) -> None: ...

    def ambiguous_step_key(self, key: str, previous: str, replacement: str) -> None: ...

    def decision_resolved(self, decision_id: str, activation: str, value: Any) -> None: ...

    def current_selected(self, node_id: Optional[str]) -> None: ...

    def current_fallback(self, dropped_id: Optional[str], chosen_id: str) -> None: ...


class NullObserver:
    def context_built(self, step_keys: Sequence[str], result_action: str) -> None:
        pass

    def ambiguous_step_key(self, key: str, previous: str, replacement: str) -> None:
        pass

    def decision_resolved(self, decision_id: str, activation: str, value: Any) -> None:
        pass

    def current_selected(self, node_id: Optional[str]) -> None:
        pass

    def current_fallback(self, dropped_id: Optional[str], chosen_id: str) -> None:
        pass


class ConsoleObserver:
    """
    Prints reconciliation diagnostics with rich markup. Warnings are always
    shown; per-decision chatter only when verbose.
    """

    def __init__(self, console: Optional[Console] = None, verbose: bool = False):
        self.console = console or Console(stderr=True)
        self.verbose = verbose

    def context_built(self, step_keys: Sequence[str], result_action: str) -> None:
        if self.verbose:
            self.console.print(f"[cyan]Match[/cyan]: {len(step_keys)} step keys, result_action={result_action!r}")

    def ambiguous_step_key(self, key: str, previous: str, replacement: str) -> None:
        self.console.print(
            f"[yellow]Ambiguous step key[/yellow] '{key}': '{replacement}' replaces '{previous}'"
        )

    def decision_resolved(self, decision_id: str, activation: str, value: Any) -> None:
        if self.verbose:
            self.console.print(f"[cyan]Decision[/cyan] {decision_id}: {activation} -> {value!r}")

    def current_selected(self, node_id: Optional[str]) -> None:
        if self.verbose:
            self.console.print(f"[cyan]Current[/cyan]: {node_id or '-'}")

    def current_fallback(self, dropped_id: Optional[str], chosen_id: str) -> None:
        if self.verbose:
            self.console.print(
                f"[cyan]Current[/cyan]: '{dropped_id}' sits under an inactive branch; using '{chosen_id}'"
            )

