"""Interactive installer front-end for the live ISO (tty1).

Collects disk, hostname and LUKS passphrase, then runs the same pipeline as
the hardened-installer CLI in-process.
"""

from __future__ import annotations

import argparse
import os
import time
from typing import List, Optional, Sequence, Tuple

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from hardened_installer.hardened_conf import load_hardened_config
from hardened_installer.lib.block import DiskInfo, list_disks
from hardened_installer.main import DEFAULT_STATE_PATH, recorded_disk, run

console = Console()

LOG_DIR = "/var/log"


def disk_choices(disks: Sequence[DiskInfo]) -> List[str]:
    """Prompt choices: 1-based index strings plus the device paths themselves."""

    return [str(i) for i in range(1, len(disks) + 1)] + [d.path for d in disks]


def resolve_disk(disks: Sequence[DiskInfo], answer: str) -> DiskInfo:
    if answer.isdigit():
        return disks[int(answer) - 1]
    for d in disks:
        if d.path == answer:
            return d
    raise ValueError(f"Unknown disk {answer!r}")


def validate_passphrase(first: str, second: str) -> Tuple[bool, str]:
    """(ok, message) for a passphrase typed twice."""

    if not first:
        return False, "Passphrase must not be empty."
    if first != second:
        return False, "Passphrases do not match."
    return True, ""


def run_log_path(log_dir: str = LOG_DIR) -> str:
    return os.path.join(log_dir, f"hardened-installer-{time.strftime('%Y%m%d-%H%M%S')}.log")


def disk_table(disks: Sequence[DiskInfo]) -> Table:
    table = Table(title="Available disks")
    table.add_column("#", justify="right")
    table.add_column("Device")
    table.add_column("Size", justify="right")
    table.add_column("Model")
    for i, d in enumerate(disks, start=1):
        table.add_row(str(i), d.path, d.size, d.model or "-")
    return table


def ask_passphrase() -> str:
    while True:
        first = Prompt.ask("LUKS passphrase", password=True, console=console)
        second = Prompt.ask("Repeat passphrase", password=True, console=console)
        ok, message = validate_passphrase(first, second)
        if ok:
            return first
        console.print(f"[red]{message}[/red]")


def wait_for_enter() -> None:
    Prompt.ask("Press Enter to exit", default="", show_default=False, console=console)


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="hardened-tui", description="Interactive hardened Debian installer")
    p.add_argument("--config", required=True, help="Path to hardened-os.conf")
    p.add_argument("--state", default=DEFAULT_STATE_PATH)
    p.add_argument("--log", default=None, help="Default: a per-run file under /var/log")
    p.add_argument("--dry-run", action="store_true")
    args = p.parse_args(argv)

    if os.geteuid() != 0 and not args.dry_run:
        console.print("[red]The installer must run as root.[/red]")
        return 1

    cfg = load_hardened_config(args.config)

    console.print(
        Panel(
            "This installs a hardened Debian system.\n"
            "The selected disk is [bold red]erased completely[/bold red] and "
            "its root filesystem is encrypted with LUKS.",
            title="Hardened Debian installer",
        )
    )

    disks = list_disks()
    if not disks:
        console.print("[red]No installable disks found.[/red]")
        wait_for_enter()
        return 1
    console.print(disk_table(disks))
    answer = Prompt.ask("Target disk", choices=disk_choices(disks), show_choices=False, console=console)
    disk = resolve_disk(disks, answer)

    if not Confirm.ask(f"Erase ALL data on [bold]{disk.path}[/bold] ({disk.size})?", default=False, console=console):
        console.print("Aborted; nothing was written.")
        return 1

    hostname = Prompt.ask("Hostname", default=cfg.os_hostname, console=console)
    passphrase = ask_passphrase()

    # The disk was just confirmed for wiping; progress recorded for another disk is void.
    previous = recorded_disk(args.state)
    start_over = previous is not None and previous != disk.path
    if start_over:
        console.print(f"[yellow]Discarding earlier progress recorded for {previous}.[/yellow]")

    log_path = args.log or run_log_path()
    handler = RichHandler(console=console, show_path=False)
    try:
        with console.status(f"Installing onto {disk.path}..."):
            run(
                config_path=args.config,
                disk=disk.path,
                hostname=hostname,
                passphrase=passphrase,
                state_path=args.state,
                log_path=log_path,
                dry_run=bool(args.dry_run),
                force=start_over,
                console_handler=handler,
            )
    except Exception as e:
        console.print(Panel(f"{e}\n\nLog: {log_path}", title="Installation failed", style="red"))
        wait_for_enter()
        return 1

    console.print(
        Panel(
            f"Installed onto {disk.path} as {hostname}.\nRemove the installer medium and reboot.\n\nLog: {log_path}",
            title="Installation complete",
            style="green",
        )
    )
    wait_for_enter()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
