"""The ``git-credential`` command: git's credential helper entry point.

Configure git to call it, e.g.::

    [credential "https://github.com/my-org"]
        helper = "!git-app-auth git-credential --pattern 'github.com/my-org/*'"
        useHttpPath = true

stdout carries only the protocol answer. When no identity applies the
command prints nothing and exits 0 so git moves on to its next helper.
"""

import click
import structlog

from git_app_auth.auth.authenticator import Credential
from git_app_auth.cli.common import build_engine, config_path, fail, run
from git_app_auth.config.settings import AuthSettings
from git_app_auth.exceptions import ConfigurationError, GitAppAuthError
from git_app_auth.protocol import OPERATIONS, CredentialRequest, format_response

log = structlog.get_logger(__name__)


@click.command(name="git-credential")
@click.option("--pattern", default=None, help="Use the identity that declares this pattern")
@click.option("--timeout", type=float, default=30.0, show_default=True, help="Deadline for host calls in seconds")
@click.argument("operation", type=click.Choice(OPERATIONS))
@click.pass_context
def git_credential_command(ctx: click.Context, pattern: str | None, timeout: float, operation: str) -> None:
    """Answer a git credential request read from stdin.

    OPERATION is get, store or erase. Only get produces output.
    """
    request = CredentialRequest.parse(click.get_text_stream("stdin"))

    if operation != "get":
        log.debug("operation_ignored", operation=operation)
        return

    url = request.target_url
    if url is None:
        log.debug("request_without_host")
        return

    path = config_path(ctx)
    if not path.exists():
        log.debug("no_configuration", path=str(path))
        return

    try:
        settings = AuthSettings.from_file(path)
    except ConfigurationError as e:
        fail(e)

    try:
        credential = run(_resolve(settings, url, pattern, timeout))
    except GitAppAuthError as e:
        log.debug("git_credential_failed", exc_info=True)
        fail(e)

    if credential is None:
        return

    click.echo(format_response(credential), nl=False)


async def _resolve(settings: AuthSettings, url: str, pattern: str | None, timeout: float) -> Credential | None:
    async with build_engine(settings) as engine:
        if pattern is None:
            return await engine.resolve(url, timeout=timeout)

        identity = engine.identity_for_pattern(pattern)
        if identity is None:
            log.debug("no_identity_for_pattern", pattern=pattern)
            return None
        return await engine.resolve_for(identity, url, timeout=timeout)
