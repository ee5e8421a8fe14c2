"""CLI entry point for git-app-auth."""

from pathlib import Path

import click

from git_app_auth.cli.check import test_command
from git_app_auth.cli.git_credential import git_credential_command
from git_app_auth.cli.gitconfig import gitconfig_group
from git_app_auth.cli.list import list_command
from git_app_auth.cli.secrets import secrets_group
from git_app_auth.cli.setup import remove_command, setup_command
from git_app_auth.config.paths import CONFIG_ENV
from git_app_auth.utils.logging_config import configure_logging


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help=f"Path to configuration file (default: ${CONFIG_ENV} or ~/.config/git-app-auth/config.yml)",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging level (logs go to stderr)",
)
@click.version_option(package_name="git-app-auth")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, log_level: str) -> None:
    """git-app-auth: short-lived git credentials from App identities and stored tokens."""
    configure_logging(log_level.upper())
    ctx.obj = {"config_path": config_path}


cli.add_command(git_credential_command)
cli.add_command(list_command)
cli.add_command(secrets_group)
cli.add_command(test_command)
cli.add_command(gitconfig_group)
cli.add_command(setup_command)
cli.add_command(remove_command)


if __name__ == "__main__":
    cli()
