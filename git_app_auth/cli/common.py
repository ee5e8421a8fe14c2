"""Helpers shared by the CLI commands."""

import asyncio
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, NoReturn, TypeVar

import click
import structlog

from git_app_auth.config.paths import default_config_path
from git_app_auth.config.settings import AuthSettings
from git_app_auth.credentials.store import SecretStore
from git_app_auth.engine import CredentialEngine
from git_app_auth.exceptions import ConfigurationError, CredentialError, GitAppAuthError

log = structlog.get_logger(__name__)

T = TypeVar("T")


def fail(error: GitAppAuthError | str) -> NoReturn:
    """Print an error (and suggestion, if any) in red on stderr and exit 1."""
    if isinstance(error, CredentialError):
        click.echo(click.style(f"Error: {error.message}", fg="red"), err=True)
        if error.suggestion:
            click.echo(click.style(f"Suggestion: {error.suggestion}", fg="yellow"), err=True)
    else:
        click.echo(click.style(f"Error: {error}", fg="red"), err=True)
    sys.exit(1)


def config_path(ctx: click.Context) -> Path:
    """Configuration path from --config, the environment or the default."""
    obj = ctx.find_root().obj or {}
    return obj.get("config_path") or default_config_path()


def load_settings(ctx: click.Context) -> AuthSettings:
    """Load settings or exit with an error."""
    try:
        return AuthSettings.from_file(config_path(ctx))
    except ConfigurationError as e:
        log.debug("config_error", exc_info=True)
        fail(e)


def build_secret_store() -> SecretStore:
    return SecretStore()


def build_engine(settings: AuthSettings) -> CredentialEngine:
    return CredentialEngine(settings.identities, secret_store=build_secret_store())


def run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)
