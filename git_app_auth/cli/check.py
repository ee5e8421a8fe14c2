"""The ``test`` command: resolve a URL end to end and report what happened."""

import time

import click

from git_app_auth.auth.authenticator import Credential
from git_app_auth.cli.common import build_engine, fail, load_settings, run
from git_app_auth.config.settings import AuthSettings
from git_app_auth.engine import CredentialEngine
from git_app_auth.exceptions import AuthenticationError
from git_app_auth.routing.router import normalize_url
from git_app_auth.utils.secrets import mask


@click.command(name="test")
@click.argument("url")
@click.option("--timeout", type=float, default=30.0, show_default=True, help="Deadline for host calls in seconds")
@click.option("--repeat", is_flag=True, help="Resolve twice to confirm the second answer comes from the cache")
@click.pass_context
def test_command(ctx: click.Context, url: str, timeout: float, repeat: bool) -> None:
    """Resolve URL with the configured identities.

    Prints the matched identity and a masked credential. The token itself
    is never printed.
    """
    normalized = normalize_url(url)
    if normalized is None:
        fail(f"Not a repository URL: {url}")

    settings = load_settings(ctx)
    click.echo(f"URL: {normalized}")
    try:
        run(_test(settings, url, timeout, repeat))
    except AuthenticationError as e:
        click.echo(click.style(f"Failed at stage {e.stage}: {e.message}", fg="red"), err=True)
        fail(f"{e.identity} could not authenticate")


async def _test(settings: AuthSettings, url: str, timeout: float, repeat: bool) -> None:
    async with build_engine(settings) as engine:
        matches = engine.router.rank(url, engine.identities)
        if not matches:
            click.echo(click.style("No identity matches; git would fall through to its next helper", fg="yellow"))
            return

        winner = matches[0]
        click.echo(f"Identity: {winner.identity.name} (pattern {winner.pattern}, priority {winner.identity.priority})")
        conflicts = engine.router.conflicts(matches)
        if conflicts:
            names = ", ".join(m.identity.name for m in conflicts)
            click.echo(click.style(f"Warning: tied with equal length and priority: {names}", fg="yellow"))

        for attempt in range(2 if repeat else 1):
            await _resolve_once(engine, url, timeout, attempt + 1)


async def _resolve_once(engine: CredentialEngine, url: str, timeout: float, attempt: int) -> None:
    started = time.perf_counter()
    credential = await engine.resolve(url, timeout=timeout)
    elapsed_ms = (time.perf_counter() - started) * 1000

    if credential is None:
        return
    _print_credential(credential, attempt, elapsed_ms)


def _print_credential(credential: Credential, attempt: int, elapsed_ms: float) -> None:
    source = "cache" if credential.from_cache else "issued"
    click.echo(f"[{attempt}] resolved in {elapsed_ms:.0f} ms ({source})")
    click.echo(f"    Username: {credential.username}")
    click.echo(f"    Password: {mask(credential.secret)} [{credential.fingerprint}]")
    if credential.expires_at is not None:
        click.echo(f"    Served until: {credential.expires_at.isoformat()}")
    click.echo(click.style("Authentication succeeded", fg="green"))
