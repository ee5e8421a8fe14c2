"""The ``list`` command: show configured identities."""

import asyncio
import json

import click
import yaml

from git_app_auth.auth.assertion import load_private_key, read_key_file
from git_app_auth.cli.common import build_secret_store, load_settings, run
from git_app_auth.config.settings import AppIdentity, AuthSettings, Identity, TokenIdentity
from git_app_auth.credentials.store import SecretStore
from git_app_auth.enums import KeySource, SecretKind
from git_app_auth.exceptions import CredentialError, CryptographicError
from git_app_auth.utils.secrets import wipe

APP_COLUMNS = ("NAME", "APP ID", "INSTALLATION ID", "PATTERNS", "PRIORITY", "KEY SOURCE")
TOKEN_COLUMNS = ("NAME", "PATTERNS", "PRIORITY", "USERNAME", "TOKEN SOURCE")


@click.command(name="list")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json", "yaml"]),
    default="table",
    show_default=True,
    help="Output format",
)
@click.option("--verify", is_flag=True, help="Check that each identity's key or token is accessible")
@click.option("--quiet", "-q", is_flag=True, help="Only print identity names")
@click.pass_context
def list_command(ctx: click.Context, output_format: str, verify: bool, quiet: bool) -> None:
    """List configured Apps and stored-token identities."""
    settings = load_settings(ctx)

    if quiet:
        for identity in settings.identities:
            click.echo(identity.name)
        return

    statuses = run(_verify_all(settings, build_secret_store())) if verify else {}

    if output_format == "table":
        _print_tables(settings, statuses)
        return

    data = settings.model_dump(mode="json", exclude_none=True)
    if verify:
        for section in ("apps", "tokens"):
            for entry in data.get(section, []):
                entry["status"] = statuses[entry["name"]]

    if output_format == "json":
        click.echo(json.dumps(data, indent=2))
    else:
        click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False), nl=False)


def _print_tables(settings: AuthSettings, statuses: dict[str, str]) -> None:
    verify = bool(statuses)

    if settings.apps:
        click.echo(click.style("Apps", bold=True))
        rows = [
            [
                app.name,
                str(app.app_id),
                str(app.installation_id) if app.installation_known else "auto-detect",
                ", ".join(app.patterns),
                str(app.priority),
                _key_source(app),
            ]
            + ([statuses[app.name]] if verify else [])
            for app in settings.apps
        ]
        _print_table([*APP_COLUMNS, *(["KEY STATUS"] if verify else [])], rows)

    if settings.tokens:
        if settings.apps:
            click.echo()
        click.echo(click.style("Access Tokens", bold=True))
        rows = [
            [
                token.name,
                ", ".join(token.patterns),
                str(token.priority),
                token.presented_username,
                str(token.token_source),
            ]
            + ([statuses[token.name]] if verify else [])
            for token in settings.tokens
        ]
        _print_table([*TOKEN_COLUMNS, *(["TOKEN STATUS"] if verify else [])], rows)


def _print_table(headers: list[str], rows: list[list[str]]) -> None:
    widths = [max(len(cell) for cell in column) for column in zip(headers, *rows)]
    click.echo("  ".join(h.ljust(w) for h, w in zip(headers, widths)).rstrip())
    for row in rows:
        click.echo("  ".join(cell.ljust(w) for cell, w in zip(row, widths)).rstrip())


def _key_source(app: AppIdentity) -> str:
    if app.private_key_source == KeySource.FILESYSTEM:
        return f"filesystem ({app.private_key_path})"
    return str(app.private_key_source)


async def _verify_all(settings: AuthSettings, store: SecretStore) -> dict[str, str]:
    identities = settings.identities
    results = await asyncio.gather(*(_verify(identity, store) for identity in identities))
    return {identity.name: status for identity, status in zip(identities, results)}


async def _verify(identity: Identity, store: SecretStore) -> str:
    """Short status for one identity's key or token, never the secret itself."""
    try:
        if isinstance(identity, TokenIdentity):
            _, backend = await store.get(identity.name, SecretKind.ACCESS_TOKEN)
            return f"ok ({backend})"

        if identity.private_key_source == KeySource.FILESYSTEM and identity.private_key_path is not None:
            pem = await asyncio.to_thread(read_key_file, identity.private_key_path)
            origin = "file"
        else:
            value, backend = await store.get(identity.name, SecretKind.PRIVATE_KEY)
            pem = bytearray(value.encode("utf-8"))
            origin = str(backend)

        try:
            load_private_key(pem)
        finally:
            wipe(pem)
        return f"ok ({origin})"
    except (CredentialError, CryptographicError) as e:
        return f"error: {e.message}"
