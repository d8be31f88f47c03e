"""Rich console output — startup status, warnings, configuration summary."""
from __future__ import annotations

from rich import box
from rich.console import Console
from rich.table import Table

from gatebot.config import Settings

console = Console()


def print_status(text: str, style: str = "green") -> None:
    """Print a colored status dot + message."""
    console.print(f"  [{style}]●[/{style}] {text}")


def print_warning(text: str) -> None:
    console.print(f"  [yellow]⚠ {text}[/yellow]")


def print_error(text: str) -> None:
    console.print(f"  [bold red]✗ {text}[/bold red]")


def _on_off(enabled: bool, detail: str = "") -> str:
    mark = "[green]on[/green]" if enabled else "[dim]off[/dim]"
    return f"{mark}  [dim]{detail}[/dim]" if detail else mark


def print_settings(settings: Settings) -> None:
    """Summarize which features the configuration enables."""
    table = Table(box=box.SIMPLE, show_header=False, padding=(0, 1))
    table.add_column(style="bold")
    table.add_column()

    table.add_row("Bot", f"@{settings.bot_username}")
    table.add_row("Admin", str(settings.admin_id))
    table.add_row("Public channel", str(settings.public_channel_id))
    table.add_row("Data directory", str(settings.data_dir))
    table.add_row("AI chat", _on_off(settings.chat_enabled, settings.completion_model))
    table.add_row(
        "Topic restriction",
        _on_off(settings.restricted_topic_id is not None, str(settings.restricted_topic_id or "")),
    )
    table.add_row("Private group invites", _on_off(bool(settings.private_group_id), settings.private_group_id))
    ttl = settings.verification_ttl_hours
    table.add_row("Entry expiry", _on_off(ttl > 0, f"{ttl:g}h" if ttl > 0 else "never"))

    console.print()
    console.print(table)
    for warning in settings.warnings:
        print_warning(warning)
    console.print()
