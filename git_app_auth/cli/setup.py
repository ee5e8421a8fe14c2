"""CLI commands for adding and removing identities.

``git-app-auth setup`` writes an App or stored-token identity into the
configuration file and places its secret, so a single command takes a
fresh machine to a working credential helper.

Example:
    Configure an App whose key lives in the keyring, then a stored token::

        $ git-app-auth setup --name ci-bot --app-id 123456 \\
            --key-file ci-bot.pem --patterns 'github.com/my-org/*'
        $ git-app-auth setup --name legacy-pat --token \\
            --patterns 'github.example.com/team/*'
        $ git-app-auth remove legacy-pat
"""

import os
from pathlib import Path

import click
import structlog
from pydantic import ValidationError

from git_app_auth.auth.assertion import load_private_key, read_key_file
from git_app_auth.cli.common import build_engine, build_secret_store, config_path, fail, load_settings, run
from git_app_auth.config.settings import AppIdentity, AuthSettings, Identity, TokenIdentity
from git_app_auth.engine import CredentialEngine
from git_app_auth.enums import BackendName, KeySource, SecretKind
from git_app_auth.exceptions import CredentialError, CryptographicError
from git_app_auth.utils.secrets import wipe

log = structlog.get_logger(__name__)

PRIVATE_KEY_ENV = "GIT_APP_AUTH_PRIVATE_KEY"


@click.command(name="setup")
@click.option("--name", required=True, help="Identity name")
@click.option("--app-id", type=click.IntRange(min=1), default=None, help="App id (App setup)")
@click.option(
    "--installation-id",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Installation id, 0 to discover it per repository",
)
@click.option(
    "--key-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help=f"PEM private key (or set ${PRIVATE_KEY_ENV})",
)
@click.option("--token", "use_token", is_flag=True, help="Configure a stored access token (prompted)")
@click.option("--username", default=None, help="Username presented with a stored token")
@click.option(
    "--patterns",
    "-p",
    multiple=True,
    required=True,
    help="URL pattern the identity serves, e.g. github.com/my-org/* (repeatable)",
)
@click.option("--priority", type=int, default=5, show_default=True, help="Higher wins between equal matches")
@click.option(
    "--use-filesystem",
    is_flag=True,
    help="Read the App key from --key-file at every use instead of storing it",
)
@click.pass_context
def setup_command(
    ctx: click.Context,
    name: str,
    app_id: int | None,
    installation_id: int,
    key_file: Path | None,
    use_token: bool,
    username: str | None,
    patterns: tuple[str, ...],
    priority: int,
    use_filesystem: bool,
) -> None:
    """Add or update an App or stored-token identity.

    Examples:

        # App with the key stored in the keyring, installation discovered per repo
        git-app-auth setup --name ci-bot --app-id 123456 --key-file app.pem -p 'github.com/my-org/*'

        # App whose key stays in an owner-only file
        git-app-auth setup --name ci-bot --app-id 123456 --key-file app.pem --use-filesystem -p 'github.com/*'

        # Stored access token
        git-app-auth setup --name legacy-pat --token -p 'github.example.com/team/*'
    """
    if use_token and app_id is not None:
        fail("Cannot use both --token and --app-id; choose one authentication method")
    if not use_token and app_id is None:
        fail("Pass --app-id for an App or --token for a stored access token")

    settings = _load_or_new(ctx)
    existing = settings.get(name)
    wanted = TokenIdentity if use_token else AppIdentity
    if existing is not None and not isinstance(existing, wanted):
        fail(f"Identity {name!r} already exists as a different kind; remove it first")

    try:
        if use_token:
            identity: Identity = _setup_token(name, username, list(patterns), priority)
        else:
            identity = _setup_app(name, app_id, installation_id, key_file, list(patterns), priority, use_filesystem)
    except (CredentialError, CryptographicError) as e:
        fail(e)
    except ValidationError as e:
        fail(f"Invalid identity: {e.errors()[0]['msg']}")

    if isinstance(identity, AppIdentity):
        settings.add_or_update_app(identity)
    else:
        settings.add_or_update_token(identity)

    path = settings.save(config_path(ctx))
    log.info("identity_configured", identity=name, kind=identity.kind.value, config=str(path))
    _print_summary(identity, path)


def _load_or_new(ctx: click.Context) -> AuthSettings:
    """Existing settings, or an empty container for a first identity."""
    if config_path(ctx).exists():
        return load_settings(ctx)
    return AuthSettings.model_construct(apps=[], tokens=[])


def _setup_token(name: str, username: str | None, patterns: list[str], priority: int) -> TokenIdentity:
    # Validate before prompting so a bad pattern never costs a typed token
    TokenIdentity(name=name, username=username, patterns=patterns, priority=priority)

    value = click.prompt("Token", hide_input=True, confirmation_prompt=True).strip()
    if not value:
        fail("Token cannot be empty")

    backend = run(build_secret_store().store(name, SecretKind.ACCESS_TOKEN, value))
    source = KeySource.KEYRING if backend == BackendName.KEYRING else KeySource.FILESYSTEM
    return TokenIdentity(name=name, token_source=source, username=username, patterns=patterns, priority=priority)


def _setup_app(
    name: str,
    app_id: int | None,
    installation_id: int,
    key_file: Path | None,
    patterns: list[str],
    priority: int,
    use_filesystem: bool,
) -> AppIdentity:
    if use_filesystem:
        if key_file is None:
            fail("Filesystem storage requires --key-file")
        identity = AppIdentity(
            name=name,
            app_id=app_id,
            installation_id=installation_id,
            private_key_source=KeySource.FILESYSTEM,
            private_key_path=key_file,
            patterns=patterns,
            priority=priority,
        )
        pem = read_key_file(identity.private_key_path)
        try:
            load_private_key(pem)
        finally:
            wipe(pem)
        return identity

    identity = AppIdentity(
        name=name,
        app_id=app_id,
        installation_id=installation_id,
        private_key_source=KeySource.KEYRING,
        patterns=patterns,
        priority=priority,
    )
    pem_text = _private_key_text(key_file)
    load_private_key(pem_text)
    backend = run(build_secret_store().store(name, SecretKind.PRIVATE_KEY, pem_text))
    if backend == BackendName.FILE:
        click.echo(click.style("Note: keyring unavailable, key stored in an owner-only file", fg="yellow"))
    return identity


def _private_key_text(key_file: Path | None) -> str:
    if key_file is not None:
        pem = read_key_file(key_file)
        try:
            return pem.decode("utf-8")
        finally:
            wipe(pem)

    from_env = os.environ.get(PRIVATE_KEY_ENV)
    if not from_env:
        fail(f"Private key required: pass --key-file or set {PRIVATE_KEY_ENV}")
    return from_env


def _print_summary(identity: Identity, path: Path) -> None:
    label = "App" if isinstance(identity, AppIdentity) else "token"
    click.echo(click.style(f"Configured {label} {identity.name!r}", fg="green"))
    if isinstance(identity, AppIdentity):
        click.echo(f"  App ID: {identity.app_id}")
        if identity.installation_known:
            click.echo(f"  Installation ID: {identity.installation_id}")
        else:
            click.echo("  Installation ID: discovered per repository")
        click.echo(f"  Key source: {identity.private_key_source}")
    else:
        click.echo(f"  Username: {identity.presented_username}")
        click.echo(f"  Token source: {identity.token_source}")
    click.echo(f"  Patterns: {', '.join(identity.patterns)}")
    click.echo(f"  Priority: {identity.priority}")
    click.echo(f"  Config: {path}")
    click.echo()
    click.echo("Next steps:")
    click.echo("  git-app-auth test --repo <repository-url>")
    click.echo("  git-app-auth gitconfig sync")


@click.command(name="remove")
@click.argument("name")
@click.option("--keep-secrets", is_flag=True, help="Leave the stored key or token in place")
@click.confirmation_option(prompt="Are you sure you want to remove this identity?")
@click.pass_context
def remove_command(ctx: click.Context, name: str, keep_secrets: bool) -> None:
    """Remove identity NAME from the configuration and delete its secrets."""
    settings = load_settings(ctx)
    identity = settings.get(name)
    if identity is None:
        fail(f"No identity named {name!r}")

    try:
        dropped = run(_forget(build_engine(settings), identity, keep_secrets))
    except CredentialError as e:
        fail(e)

    settings.remove(name)
    path = config_path(ctx)
    if settings.identities:
        settings.save(path)
    else:
        path.unlink()
        click.echo(f"No identities left, removed {path}")

    log.info("identity_removed", identity=name, cached_dropped=dropped)
    click.echo(click.style(f"Removed {identity.kind.value} identity {name!r}", fg="green"))


async def _forget(engine: CredentialEngine, identity: Identity, keep_secrets: bool) -> int:
    """Drop cached credentials and, unless asked not to, the stored secret."""
    async with engine:
        dropped = await engine.invalidate(identity.name)
        if not keep_secrets:
            kind = SecretKind.PRIVATE_KEY if isinstance(identity, AppIdentity) else SecretKind.ACCESS_TOKEN
            await engine.authenticator.secret_store.delete(identity.name, kind)
        return dropped
