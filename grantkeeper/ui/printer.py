from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional

from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from grantkeeper import __version__
from grantkeeper.models.grant import Grant, GrantStatus
from grantkeeper.models.request import RequestStatus
from grantkeeper.providers.base import Option


# ---------- Helpers ----------

def _iso_utc(ts: Optional[datetime]) -> str:
    """UTC ISO 8601, second precision, with Z suffix."""
    if ts is None:
        return "-"
    return ts.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _redact(s: str, show: int = 12) -> str:
    if not s:
        return "-"
    return s if len(s) <= show else s[:show] + "…"


def _status_style(status: str) -> str:
    if status in (GrantStatus.ACTIVE, RequestStatus.APPROVED):
        return "bold green"
    if status in (GrantStatus.PENDING,):
        return "bold cyan"
    if status in (GrantStatus.ERROR, RequestStatus.DECLINED):
        return "bold red"
    return "bold yellow"


def _styled(status: str) -> str:
    style = _status_style(status)
    return f"[{style}]{status}[/{style}]"


def _divider(console: Console, title: Optional[str] = None) -> None:
    """
    Subtle section divider that adapts to terminal width.
      ─────── GRANT ─────────────────────────────
    """
    width = console.size.width if console.is_terminal else 80
    width = max(40, width)

    if title:
        label = f" {title.strip().upper()} "
        left = "─" * 6
        right = "─" * max(0, width - len(left) - len(label))
        console.print(f"[dim]{left}{label}{right}[/dim]")
    else:
        console.print(f"[dim]{'─' * width}[/dim]")


def _table(console: Console) -> Table:
    return Table(
        box=box.SIMPLE_HEAD if console.is_terminal else box.SIMPLE,
        show_header=True,
        header_style="bold white",
        border_style="dim",
        expand=True,
    )


# ---------- UI ----------

def print_banner(console: Console) -> None:
    if (not console.is_terminal) or (console.size and console.size.width < 70):
        console.print("GRANTKEEPER", style="bold green")
    else:
        console.print(r"""
   ____                 _   _
  / ___|_ __ __ _ _ __ | |_| | _____  ___ _ __   ___ _ __
 | |  _| '__/ _` | '_ \| __| |/ / _ \/ _ \ '_ \ / _ \ '__|
 | |_| | | | (_| | | | | |_|   <  __/  __/ |_) |  __/ |
  \____|_|  \__,_|_| |_|\__|_|\_\___|\___| .__/ \___|_|
                                         |_|
""".strip("\n"), style="bold green")
    console.print(f"time-bound access grants  v{__version__}", style="bold cyan")
    console.print("")


def print_grant(grant: Grant, console: Optional[Console] = None, verbose: bool = False) -> None:
    console = console or Console(highlight=False)
    print_banner(console)

    _divider(console, "UTC")
    console.print(f"[green]Start:[/green] [dim]{_iso_utc(grant.start)}[/dim]")
    console.print(f"[green]End:[/green]   [dim]{_iso_utc(grant.end)}[/dim]\n")

    _divider(console, "GRANT")
    console.print(f" • Grant ID: [yellow]{grant.id}[/yellow]")
    console.print(f" • Provider: [yellow]{grant.provider}[/yellow]")
    # subjects are emails, keep them short unless asked
    subject = grant.subject if verbose else _redact(grant.subject)
    console.print(f" • Subject:  [yellow]{subject}[/yellow]")
    console.print(f" • Status:   {_styled(grant.status)}\n")

    if grant.with_:
        _divider(console, "ARGUMENTS")
        table = _table(console)
        table.add_column("KEY", ratio=1, no_wrap=True, style="white")
        table.add_column("VALUE", ratio=4, style="dim")
        for key in sorted(grant.with_):
            table.add_row(key, str(grant.with_[key]))
        console.print(table)
        console.print("")


def print_options(provider_id: str, arg_id: str, options: Iterable[Option], console: Optional[Console] = None) -> None:
    console = console or Console(highlight=False)
    _divider(console, f"{provider_id} / {arg_id}")
    table = _table(console)
    table.add_column("LABEL", ratio=2, style="white")
    table.add_column("VALUE", ratio=3, style="dim")
    count = 0
    for option in options:
        table.add_row(option.label, option.value)
        count += 1
    console.print(table)
    console.print(f"[dim]{count} options[/dim]\n")


def print_instructions(grant_id: str, text: str, console: Optional[Console] = None) -> None:
    console = console or Console(highlight=False)
    _divider(console, f"ACCESS INSTRUCTIONS: {grant_id}")
    console.print(Markdown(text))
    console.print("")


def print_is_active(grant_id: str, active: bool, console: Optional[Console] = None) -> None:
    console = console or Console(highlight=False)
    if active:
        console.print(f"[black on green] ACTIVE [/black on green] grant {grant_id} currently has access")
    else:
        console.print(f"[white on red] INACTIVE [/white on red] grant {grant_id} has no access")
