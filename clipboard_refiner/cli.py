"""Command-line interface for Clipboard Refiner.

Responsibilities:
- Expose user-facing commands for rewriting text, listing styles, and managing
  stored credentials and the offline cache.
- Convert CLI arguments into `RefinerSettings` and drive one `RewriteEngine`.

Key public functions:
- `app`: Typer application instance.
- `main`: invoke the Typer application.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
import sys
from typing import Annotated

import typer

from .cli_rendering import (
    StreamingEcho,
    echo_credential_status,
    echo_style_list,
    exit_with_command_error,
)
from .config import ConfigLoader, RefinerSettings, RuntimeConfigSources
from .credentials import CredentialStore, create_credential_store
from .engine.orchestrator import DEFAULT_SYNC_TIMEOUT_SECONDS, RewriteEngine
from .errors import RefinerStageError
from .history import InMemoryHistory
from .llm.cache import OfflineCacheStore
from .models.backends import BackendType
from .models.datatypes import ImageAttachment
from .models.styles import RewriteStyle
from .parsing import normalize_optional_string, parse_unit_interval
from .telemetry.logger import configure_cli_logging

app = typer.Typer(
    name="clipboard-refiner",
    no_args_is_help=True,
    help="Clipboard Refiner CLI.",
)
credentials_app = typer.Typer(no_args_is_help=True, help="Manage stored backend API keys.")
cache_app = typer.Typer(no_args_is_help=True, help="Manage the offline rewrite cache.")
app.add_typer(credentials_app, name="credentials")
app.add_typer(cache_app, name="cache")


def _load_settings(config_path: Path | None) -> RefinerSettings:
    """Load settings from YAML when requested, else from the environment."""

    if config_path is None:
        try:
            return ConfigLoader.from_env()
        except ValueError as exc:
            raise RefinerStageError(
                stage="config",
                detail=f"Invalid environment configuration: {exc}",
                hint="Fix the `REFINER_*` environment variables and rerun.",
            ) from exc

    try:
        return ConfigLoader.from_yaml(config_path)
    except FileNotFoundError as exc:
        raise RefinerStageError(
            stage="config",
            detail=f"Config file not found: `{config_path}`.",
            hint="Provide an existing path via `--config <path.yaml>`.",
        ) from exc
    except ValueError as exc:
        raise RefinerStageError(
            stage="config",
            detail=f"Invalid config file `{config_path}`: {exc}",
            hint="Fix config schema/values and rerun.",
        ) from exc
    except OSError as exc:
        raise RefinerStageError(
            stage="config",
            detail=f"Failed to load config file `{config_path}`: {exc}",
            hint="Verify file permissions.",
        ) from exc


def _parse_backend(value: str) -> BackendType:
    try:
        return BackendType.parse(value)
    except ValueError as exc:
        raise RefinerStageError(
            stage="arguments",
            detail=str(exc),
            hint="Use one of `openai`, `anthropic`, `xai`, `local`.",
        ) from exc


def _secure_values(store: CredentialStore) -> dict[str, str]:
    """Read stored API keys, treating unavailable storage as empty."""

    if not store.is_available():
        return {}
    return store.secure_values()


def _apply_overrides(
    settings: RefinerSettings,
    *,
    backend: str | None,
    model: str | None,
    aggressiveness: float | None,
    stream: bool | None,
    skill: str | None,
    api_key: str | None,
    store: CredentialStore,
) -> RefinerSettings:
    """Apply explicit CLI values on top of loaded settings."""

    selected = _parse_backend(backend) if backend else settings.selected_backend
    updated = replace(settings, selected_backend=selected)

    model_value = normalize_optional_string(model)
    if model_value is not None:
        model_field = f"model_{selected.config_id}"
        updated = replace(updated, **{model_field: model_value})
    if aggressiveness is not None:
        try:
            parse_unit_interval(aggressiveness, "--aggressiveness")
        except ValueError as exc:
            raise RefinerStageError(stage="arguments", detail=str(exc)) from exc
        updated = replace(updated, aggressiveness=aggressiveness)
    if stream is not None:
        updated = replace(updated, streaming_enabled=stream)
    if skill is not None:
        updated = replace(updated, selected_skill_id=skill.strip())

    cli_values: dict[str, str] = {}
    api_key_value = normalize_optional_string(api_key)
    if api_key_value is not None and selected.uses_api_key:
        cli_values[selected.api_key_identifier] = api_key_value

    try:
        secure_values = _secure_values(store)
    except Exception as exc:
        raise RefinerStageError(
            stage="credentials",
            detail=f"Failed to read stored API keys: {exc}",
            hint="Check your keyring backend, or pass `--api-key`.",
        ) from exc

    updated = updated.with_runtime_sources(
        RuntimeConfigSources(
            cli=cli_values,
            secure=secure_values,
            env=settings.runtime_sources.env,
        )
    )
    try:
        updated.validate()
    except ValueError as exc:
        raise RefinerStageError(stage="arguments", detail=str(exc)) from exc
    return updated


def _read_source_text(text: str | None, file: Path | None) -> str:
    """Resolve source text from the argument, a file, or stdin."""

    if text is not None and file is not None:
        raise RefinerStageError(
            stage="input",
            detail="Pass either TEXT or `--file`, not both.",
        )
    if file is not None:
        try:
            source = file.read_text(encoding="utf-8")
        except OSError as exc:
            raise RefinerStageError(
                stage="input",
                detail=f"Failed to read `{file}`: {exc}",
            ) from exc
    elif text is not None:
        source = text
    else:
        source = sys.stdin.read()

    if not source.strip():
        raise RefinerStageError(
            stage="input",
            detail="No text to rewrite.",
            hint="Pass TEXT, `--file <path>`, or pipe text on stdin.",
        )
    return source


def _load_images(images: list[Path] | None) -> list[ImageAttachment]:
    attachments: list[ImageAttachment] = []
    for image in images or []:
        try:
            attachments.append(ImageAttachment.from_path(image))
        except OSError as exc:
            raise RefinerStageError(
                stage="input",
                detail=f"Failed to read image `{image}`: {exc}",
            ) from exc
    return attachments


@app.command("rewrite")
def rewrite_command(
    text: Annotated[
        str | None,
        typer.Argument(help="Text to rewrite; read from stdin when omitted."),
    ] = None,
    file: Annotated[
        Path | None,
        typer.Option("--file", help="Read source text from a UTF-8 file."),
    ] = None,
    style: Annotated[
        str | None,
        typer.Option("--style", help="Rewrite style (see `styles`)."),
    ] = None,
    backend: Annotated[
        str | None,
        typer.Option("--backend", help="Backend: openai, anthropic, xai, or local."),
    ] = None,
    model: Annotated[
        str | None,
        typer.Option("--model", help="Model override for the selected backend."),
    ] = None,
    aggressiveness: Annotated[
        float | None,
        typer.Option("--aggressiveness", help="Rewrite strength between 0 and 1."),
    ] = None,
    stream: Annotated[
        bool | None,
        typer.Option("--stream/--no-stream", help="Stream partial output as it arrives."),
    ] = None,
    skill: Annotated[
        str | None,
        typer.Option("--skill", help="Bundled prompt skill id, or `none`."),
    ] = None,
    image: Annotated[
        list[Path] | None,
        typer.Option("--image", help="Attach an image; repeat for several."),
    ] = None,
    config: Annotated[
        Path | None,
        typer.Option("--config", help="YAML settings file."),
    ] = None,
    api_key: Annotated[
        str | None,
        typer.Option("--api-key", help="API key for this run only."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Log engine events to stderr."),
    ] = False,
) -> None:
    """Rewrite text with the configured backend and print the result."""

    configure_cli_logging(level="INFO" if verbose else "ERROR")
    try:
        settings = _apply_overrides(
            _load_settings(config),
            backend=backend,
            model=model,
            aggressiveness=aggressiveness,
            stream=stream,
            skill=skill,
            api_key=api_key,
            store=create_credential_store(),
        )
        source = _read_source_text(text, file)
        attachments = _load_images(image)
    except RefinerStageError as exc:
        exit_with_command_error("rewrite", exc)

    engine = RewriteEngine(settings, history=InMemoryHistory())
    echo = StreamingEcho()
    try:
        request = engine.build_request(
            source,
            style=RewriteStyle.from_user_data(style) if style else None,
            attachments=attachments,
        )
        result = engine.rewrite_sync(
            request,
            timeout=max(DEFAULT_SYNC_TIMEOUT_SECONDS, settings.request_timeout_seconds),
            on_partial=echo.on_partial if request.streaming else None,
        )
    finally:
        engine.shutdown()

    if not result.ok:
        exit_with_command_error("rewrite", result.error or RuntimeError("unknown error"))

    if request.streaming:
        echo.finish(result.text or "")
    else:
        typer.echo(result.text or "")
    if result.from_cache:
        typer.secho("(served from offline cache)", fg=typer.colors.YELLOW, err=True)


@app.command("styles")
def styles_command() -> None:
    """List rewrite styles and bundled prompt skills."""

    echo_style_list()


def _cloud_backend(backend: str) -> BackendType:
    selected = _parse_backend(backend)
    if not selected.uses_api_key:
        raise RefinerStageError(
            stage="credentials",
            detail=f"{selected.display_name} backend does not use an API key.",
            hint="Choose `openai`, `anthropic`, or `xai`.",
        )
    return selected


@credentials_app.command("status")
def credentials_status_command() -> None:
    """Show which backend API keys are stored securely."""

    store = create_credential_store()
    try:
        available = store.is_available()
        stored = {
            backend: available and store.get_api_key(backend) is not None
            for backend in BackendType
            if backend.uses_api_key
        }
    except Exception as exc:
        exit_with_command_error(
            "credentials",
            RefinerStageError(stage="credentials", detail=f"Failed to read stored API keys: {exc}"),
        )
    echo_credential_status(available, stored)


@credentials_app.command("set")
def credentials_set_command(
    backend: Annotated[str, typer.Option("--backend", help="openai, anthropic, or xai.")],
) -> None:
    """Prompt for an API key with hidden input and store it securely."""

    try:
        selected = _cloud_backend(backend)
    except RefinerStageError as exc:
        exit_with_command_error("credentials", exc)

    prompted_api_key = normalize_optional_string(
        typer.prompt(
            f"{selected.display_name} API key (hidden input)",
            default="",
            hide_input=True,
            show_default=False,
        )
    )
    if prompted_api_key is None:
        exit_with_command_error(
            "credentials",
            RefinerStageError(
                stage="credentials",
                detail="No API key entered.",
                hint="Provide a non-empty API key.",
            ),
        )
    try:
        create_credential_store().set_api_key(selected, prompted_api_key)
    except Exception as exc:
        exit_with_command_error(
            "credentials",
            RefinerStageError(
                stage="credentials",
                detail=f"Failed to store API key securely: {exc}",
                hint="Install and configure a keyring backend and retry.",
            ),
        )
    typer.echo(f"{selected.display_name} API key stored in secure credential storage.")


@credentials_app.command("clear")
def credentials_clear_command(
    backend: Annotated[str, typer.Option("--backend", help="openai, anthropic, or xai.")],
) -> None:
    """Remove a stored backend API key."""

    try:
        selected = _cloud_backend(backend)
        removed = create_credential_store().clear_api_key(selected)
    except RefinerStageError as exc:
        exit_with_command_error("credentials", exc)
    except Exception as exc:
        exit_with_command_error(
            "credentials",
            RefinerStageError(stage="credentials", detail=f"Failed to clear API key: {exc}"),
        )
    if removed:
        typer.echo(f"Stored {selected.display_name} API key cleared from secure credential storage.")
    else:
        typer.echo(f"No stored {selected.display_name} API key found in secure credential storage.")


@cache_app.command("clear")
def cache_clear_command(
    config: Annotated[
        Path | None,
        typer.Option("--config", help="YAML settings file naming the cache path."),
    ] = None,
) -> None:
    """Delete every offline cache entry."""

    try:
        settings = _load_settings(config)
    except RefinerStageError as exc:
        exit_with_command_error("cache", exc)
    OfflineCacheStore(settings.cache_path).clear()
    typer.echo(f"Offline cache cleared: {settings.cache_path}")


def main() -> None:
    """CLI entrypoint for console scripts."""
    app()


if __name__ == "__main__":
    main()
