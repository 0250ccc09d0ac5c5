"""
Interactive prompts used by the exposure selector and the staged merge.
"""
from typing import Dict, List, Optional, Sequence

import click
from rich.console import Console as RichConsole
from rich.table import Table

from infrasynth.errors import NonInteractiveError, UserAbortError

ON_CONFLICT_CHOICES = ["prompt", "overwrite", "keep"]


def _parse_selection(answer: str, count: int) -> Optional[List[int]]:
    """'1, 3' -> [0, 2]; None when the answer is not a valid selection."""
    answer = answer.strip()
    if not answer or answer.lower() == "none":
        return []
    if answer.lower() == "all":
        return list(range(count))
    picked = []
    for token in answer.replace(" ", ",").split(","):
        if not token:
            continue
        if not token.isdigit() or not 1 <= int(token) <= count:
            return None
        idx = int(token) - 1
        if idx not in picked:
            picked.append(idx)
    return sorted(picked)


class Console:
    """
    Terminal prompts on stderr.

    With ``no_prompt`` every question that has no predetermined answer raises
    NonInteractiveError instead of blocking.
    """

    def __init__(self, no_prompt: bool = False, no_color: bool = False, on_conflict: str = "prompt"):
        if on_conflict not in ON_CONFLICT_CHOICES:
            raise ValueError(f"on_conflict must be one of {ON_CONFLICT_CHOICES}")
        self.no_prompt = no_prompt
        self.on_conflict = on_conflict
        self.out = RichConsole(stderr=True, no_color=no_color)

    def message(self, text: str) -> None:
        self.out.print(text)

    def warn(self, text: str) -> None:
        self.out.print(f"[yellow]Warning:[/yellow] {text}")

    def _ask(self, prompt: str, **kwargs) -> str:
        try:
            return click.prompt(prompt, err=True, **kwargs)
        except click.Abort as exc:
            raise UserAbortError(prompt) from exc

    def _confirm(self, prompt: str, default: bool = False) -> bool:
        try:
            return click.confirm(prompt, default=default, err=True)
        except click.Abort as exc:
            raise UserAbortError(prompt) from exc

    def multi_select(self, message: str, options: Sequence[str], defaults: Sequence[str] = ()) -> List[str]:
        """Return the chosen subset of `options`, in option order."""
        if self.no_prompt:
            raise NonInteractiveError(message, options)

        tbl = Table(title=message, show_header=True, header_style="bold")
        tbl.add_column("#", style="dim", width=4)
        tbl.add_column("Service")
        for i, opt in enumerate(options, 1):
            tbl.add_row(str(i), opt)
        self.out.print(tbl)

        default = ",".join(str(options.index(d) + 1) for d in defaults if d in options)
        while True:
            answer = self._ask(
                "Numbers separated by commas ('all', or blank for none)",
                default=default,
                show_default=bool(default),
            )
            picked = _parse_selection(answer, len(options))
            if picked is not None:
                return [options[i] for i in picked]
            self.out.print(f"[red]Invalid selection:[/red] {answer}")

    def resolve_conflicts(self, paths: Sequence[str]) -> Dict[str, bool]:
        """
        Decide, for every conflicting path, whether to overwrite (True) or keep
        the existing file (False). All conflicts are shown before asking.
        """
        if not paths:
            return {}
        if self.on_conflict == "overwrite":
            return {p: True for p in paths}
        if self.on_conflict == "keep":
            return {p: False for p in paths}
        if self.no_prompt:
            raise NonInteractiveError("Resolve conflicting files (use --on-conflict)", paths)

        tbl = Table(title="Existing files differ from the generated ones", show_header=True, header_style="bold")
        tbl.add_column("File")
        for p in paths:
            tbl.add_row(p)
        self.out.print(tbl)

        choice = self._ask(
            "Overwrite all, keep all, or decide per file?",
            type=click.Choice(["overwrite", "keep", "each"], case_sensitive=False),
            default="keep",
        ).lower()
        if choice == "overwrite":
            return {p: True for p in paths}
        if choice == "keep":
            return {p: False for p in paths}
        return {p: self._confirm(f"Overwrite {p}?") for p in paths}
