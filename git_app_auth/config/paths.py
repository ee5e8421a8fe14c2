"""Default filesystem locations."""

import os
from pathlib import Path

CONFIG_ENV = "GIT_APP_AUTH_CONFIG"


def config_home() -> Path:
    """Directory holding the configuration file and the file secret store."""
    xdg = os.getenv("XDG_CONFIG_HOME")
    base = Path(xdg) if xdg else Path.home() / ".config"
    return base / "git-app-auth"


def default_config_path() -> Path:
    """Configuration file path, honouring the GIT_APP_AUTH_CONFIG override."""
    override = os.getenv(CONFIG_ENV)
    if override:
        return Path(override).expanduser().absolute()
    return config_home() / "config.yml"


def default_secrets_dir() -> Path:
    return config_home() / "secrets"
