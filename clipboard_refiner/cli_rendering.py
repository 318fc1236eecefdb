"""CLI output and error rendering helpers.

This module centralizes user-facing CLI presentation for command diagnostics,
streamed rewrite output, style listings, and credential status rows.
"""

from __future__ import annotations

from typing import NoReturn

import typer

from .errors import RefinerStageError
from .models.backends import BackendType
from .models.styles import BUNDLED_SKILLS, NONE_SKILL_ID, RewriteStyle


def exit_with_command_error(command_name: str, exc: Exception) -> NoReturn:
    """Print concise diagnostics for command failures and exit with code 1."""

    if isinstance(exc, RefinerStageError):
        typer.secho(
            f"{command_name} failed at stage `{exc.stage}`: {exc.detail}",
            fg=typer.colors.RED,
            err=True,
        )
        if exc.hint:
            typer.secho(f"Hint: {exc.hint}", fg=typer.colors.YELLOW, err=True)
    else:
        typer.secho(f"{command_name} failed: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1) from exc


class StreamingEcho:
    """Print cumulative partial snapshots as they grow.

    Each snapshot is compared with what was already printed; only the new
    suffix is written. A snapshot that does not extend the printed text is
    written on a fresh line in full.
    """

    def __init__(self) -> None:
        self.printed = ""

    def on_partial(self, text: str) -> None:
        if text.startswith(self.printed):
            typer.echo(text[len(self.printed) :], nl=False)
        else:
            typer.echo("")
            typer.echo(text, nl=False)
        self.printed = text

    def finish(self, final_text: str) -> None:
        """Print whatever the final text adds, then end the line."""

        if final_text != self.printed:
            self.on_partial(final_text)
        typer.echo("")


def echo_style_list() -> None:
    """Print selectable styles and bundled skills."""

    typer.echo("Styles:")
    for style in RewriteStyle:
        typer.echo(f"  {style.name.lower()}: {style.display_name}")
    typer.echo("Skills:")
    typer.echo(f"  {NONE_SKILL_ID}: No skill")
    for skill in BUNDLED_SKILLS:
        typer.echo(f"  {skill.id}: {skill.name} - {skill.summary}")


def echo_credential_status(available: bool, stored: dict[BackendType, bool]) -> None:
    """Print secure storage availability and one row per cloud backend."""

    typer.echo(f"Secure credential storage: {'available' if available else 'unavailable'}")
    for backend, present in stored.items():
        status = "present" if present else "not set"
        typer.echo(f"Stored {backend.display_name} API key: {status}")
