"""The ``gitconfig`` command group: register the helper with git.

``sync`` writes one ``credential.<context>.helper`` entry per configured
pattern, where the context is the pattern's host plus its first path
segment (``github.com/my-org/*`` -> ``https://github.com/my-org``). Git
only passes the repository path to helpers when ``useHttpPath`` is set for
the host, so ``sync`` enables it wherever a context includes a path.

Git consults helpers in config file order. Helpers configured by other
tools for a bare host are moved after the path-specific ones so that
git-app-auth is asked first for the paths it owns. Other keys in that
host section (``username`` and the like) move with them.
"""

import shlex
import shutil
import subprocess  # nosec B404
import sys

import click

from git_app_auth.cli.common import fail, load_settings

HELPER_MARKER = "git-app-auth"


def credential_context(pattern: str) -> str | None:
    """Map a routing pattern to the credential context git should match.

    Returns:
        ``https://host`` or ``https://host/owner``, or None when the
        pattern has no usable host
    """
    pattern = pattern.strip()
    for scheme in ("https://", "http://"):
        pattern = pattern.removeprefix(scheme)

    parts = pattern.split("/")
    host = parts[0].lower()
    if not host or "." not in host or "*" in host:
        return None

    if len(parts) >= 2 and parts[1] and parts[1] != "*":
        return f"https://{host}/{parts[1]}"
    return f"https://{host}"


def _host_of(context: str) -> str:
    return context.removeprefix("https://").split("/", 1)[0]


def helper_command(pattern: str | None = None) -> str:
    """Helper value git runs through the shell.

    With a pattern the helper answers as the identity owning it; without
    one it routes each request by URL.
    """
    executable = shutil.which(HELPER_MARKER)
    if executable:
        program = shlex.quote(executable)
    else:
        program = f"{shlex.quote(sys.executable)} -m git_app_auth"
    if pattern is None:
        return f"!{program} git-credential"
    return f"!{program} git-credential --pattern {shlex.quote(pattern)}"


def _git_config(scope: str, *args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(  # nosec B603 B607
        ["git", "config", scope, *args],
        capture_output=True,
        text=True,
        timeout=10,
    )


@click.group(name="gitconfig")
def gitconfig_group() -> None:
    """Register or remove git-app-auth as git's credential helper."""
    pass


def scope_options(func):  # type: ignore[no-untyped-def]
    func = click.option("--local", "scope", flag_value="--local", help="Repository config")(func)
    func = click.option("--global", "scope", flag_value="--global", default=True, help="User config (default)")(func)
    return func


@gitconfig_group.command(name="sync")
@scope_options
@click.pass_context
def sync_command(ctx: click.Context, scope: str) -> None:
    """Write credential helper entries for every configured pattern."""
    settings = load_settings(ctx)

    patterns: dict[str, str] = {}
    for identity in settings.identities:
        for pattern in identity.patterns:
            patterns.setdefault(pattern, identity.name)

    contexts: dict[str, list[str]] = {}
    for pattern in patterns:
        context = credential_context(pattern)
        if context is None:
            click.echo(click.style(f"Skipping pattern without a host: {pattern}", fg="yellow"))
            continue
        contexts.setdefault(context, []).append(pattern)

    if not contexts:
        fail("No patterns with a host to configure")

    path_hosts = sorted({_host_of(c) for c in contexts if c != f"https://{_host_of(c)}"})
    saved = {host: _detach_host_section(scope, host) for host in path_hosts}

    configured = 0
    for context, owned in contexts.items():
        # Patterns sharing a context are told apart by URL routing
        pattern = owned[0] if len(owned) == 1 else None
        key = f"credential.{context}.helper"
        _git_config(scope, "--unset-all", key)
        result = _git_config(scope, "--add", key, helper_command(pattern))
        if result.returncode != 0:
            click.echo(click.style(f"Failed to configure {context}: {result.stderr.strip()}", fg="red"), err=True)
            continue
        configured += 1
        sources = ", ".join(f"{patterns[p]}: {p}" for p in owned)
        click.echo(f"Configured {context} ({sources})")

    for host in path_hosts:
        _git_config(scope, f"credential.https://{host}.useHttpPath", "true")
        click.echo(f"Enabled useHttpPath for {host}")
        for key, value in saved[host]:
            _git_config(scope, "--add", key, value)
        helpers = sum(1 for key, _ in saved[host] if key.endswith(".helper"))
        if helpers:
            click.echo(f"Moved {helpers} existing helper(s) for {host} after path-specific ones")

    if configured == 0:
        fail("No credential helpers could be configured")
    click.echo(click.style(f"Configured {configured} credential helper(s)", fg="green"))


def _detach_host_section(scope: str, host: str) -> list[tuple[str, str]]:
    """Remove the host-wide credential section so it can be re-added after the path ones.

    Returns:
        The section's entries to restore, in order, minus our own helpers
        and ``useHttpPath`` (which sync sets itself)
    """
    section = f"credential.https://{host}"
    pattern = "^" + section.replace(".", r"\.") + r"\.[^.]+$"
    result = _git_config(scope, "--get-regexp", pattern)
    if result.returncode != 0 or not result.stdout.strip():
        return []

    entries = []
    for line in result.stdout.splitlines():
        key, _, value = line.strip().partition(" ")
        variable = key.rsplit(".", 1)[-1].lower()
        if variable == "usehttppath" or (variable == "helper" and HELPER_MARKER in value):
            continue
        entries.append((key, value))

    _git_config(scope, "--remove-section", section)
    return entries


@gitconfig_group.command(name="clean")
@scope_options
def clean_command(scope: str) -> None:
    """Remove every credential helper entry pointing at git-app-auth."""
    result = _git_config(scope, "--get-regexp", r"^credential\..*\.helper$")
    if result.returncode != 0:
        click.echo("No git-app-auth credential helpers found")
        return

    removed = 0
    for line in result.stdout.splitlines():
        key, _, value = line.strip().partition(" ")
        if HELPER_MARKER not in value and "git_app_auth" not in value:
            continue
        unset = _git_config(scope, "--unset-all", key, "git[-_]app[-_]auth")
        if unset.returncode != 0:
            click.echo(click.style(f"Failed to remove {key}", fg="yellow"))
            continue
        removed += 1
        click.echo(f"Removed {key.removeprefix('credential.').removesuffix('.helper')}")

    if removed:
        click.echo(click.style(f"Removed {removed} credential helper(s)", fg="green"))
    else:
        click.echo("No git-app-auth credential helpers found")
