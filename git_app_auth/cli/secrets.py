"""CLI commands for secret management.

This module provides the ``git-app-auth secrets`` command group for storing
and removing the private keys and access tokens identities authenticate
with.

Secrets are stored in the OS keyring when one is usable (macOS Keychain,
GNOME Keyring, Windows Credential Manager) and otherwise in owner-only
files under ``~/.config/git-app-auth/secrets``.

Example:
    Store an App private key and a stored token::

        $ git-app-auth secrets set ci-bot --kind private_key --key-file ci-bot.pem
        $ git-app-auth secrets set legacy-pat --kind access_token
        $ git-app-auth secrets test
"""

from pathlib import Path

import click

from git_app_auth.auth.assertion import load_private_key
from git_app_auth.cli.common import build_secret_store, fail, run
from git_app_auth.credentials.store import SecretStore
from git_app_auth.enums import BackendName, SecretKind
from git_app_auth.exceptions import CredentialError, CryptographicError

KIND_CHOICE = click.Choice([kind.value for kind in SecretKind])


@click.group(name="secrets")
def secrets_group() -> None:
    """Manage private keys and access tokens.

    Examples:

        # Store an App private key from a PEM file
        git-app-auth secrets set ci-bot --kind private_key --key-file ci-bot.pem

        # Store an access token (prompted, not echoed)
        git-app-auth secrets set legacy-pat --kind access_token

        # Check which backends are usable
        git-app-auth secrets test
    """
    pass


@secrets_group.command(name="set")
@click.argument("name")
@click.option("--kind", type=KIND_CHOICE, required=True, help="Type of secret")
@click.option(
    "--key-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Read the secret from this file instead of prompting",
)
def set_secret(name: str, kind: str, key_file: Path | None) -> None:
    """Store the secret for identity NAME.

    Private keys are parsed before they are stored, so a malformed PEM
    file is rejected here rather than at the first git fetch.
    """
    secret_kind = SecretKind(kind)

    if key_file is not None:
        value = key_file.read_text(encoding="utf-8")
    elif secret_kind == SecretKind.PRIVATE_KEY:
        fail("Private keys must be read from a file: pass --key-file")
    else:
        value = click.prompt("Token", hide_input=True, confirmation_prompt=True)

    value = value.strip() if secret_kind == SecretKind.ACCESS_TOKEN else value

    try:
        if secret_kind == SecretKind.PRIVATE_KEY:
            load_private_key(value)
        backend = run(build_secret_store().store(name, secret_kind, value))
    except (CredentialError, CryptographicError) as e:
        fail(e)
    except ValueError as e:
        fail(str(e))

    click.echo(f"Stored {secret_kind} for {name} in {backend} backend")
    if backend == BackendName.FILE:
        click.echo(click.style("Note: keyring unavailable, stored in an owner-only file", fg="yellow"))
    click.echo(click.style("Secret stored successfully", fg="green"))


@secrets_group.command(name="delete")
@click.argument("name")
@click.option("--kind", type=KIND_CHOICE, required=True, help="Type of secret")
@click.confirmation_option(prompt="Are you sure you want to delete this secret?")
def delete_secret(name: str, kind: str) -> None:
    """Delete the secret for identity NAME from every backend."""
    try:
        deleted = run(build_secret_store().delete(name, SecretKind(kind)))
    except CredentialError as e:
        fail(e)

    if deleted:
        click.echo(click.style("Secret deleted successfully", fg="green"))
    else:
        click.echo(click.style("Secret not found", fg="yellow"))


@secrets_group.command(name="test")
def test_secrets() -> None:
    """Check which secret backends are usable."""
    click.echo(click.style("Testing secret backends...", bold=True))
    click.echo()

    store = build_secret_store()

    click.echo("Keyring backend: ", nl=False)
    if run(store.available()):
        click.echo(click.style("Available", fg="green"))
    else:
        click.echo(click.style("Not available", fg="yellow"))
        click.echo("  Secrets will be stored in owner-only files instead")

    click.echo("File backend: ", nl=False)
    root = _file_root(store)
    click.echo(click.style("Available", fg="green") + (f" ({root})" if root else ""))


def _file_root(store: SecretStore) -> Path | None:
    return getattr(store.file, "root", None)
