"""Shared CLI helpers: Rich output."""

from __future__ import annotations

from rich.console import Console

console = Console()


def print_header(text: str) -> None:
    """Print a styled header."""
    console.print(f"\n[bold cyan]{text}[/bold cyan]")


def print_error(text: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {text}")


def print_success(text: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]{text}[/bold green]")


def settings_overrides(**options) -> dict:
    """Drop options the user did not pass, so environment values survive."""
    return {name: value for name, value in options.items() if value not in (None, False)}
