"""Identity configuration."""

from git_app_auth.config.paths import config_home, default_config_path, default_secrets_dir
from git_app_auth.config.settings import AppIdentity, AuthSettings, Identity, TokenIdentity

__all__ = [
    "AppIdentity",
    "AuthSettings",
    "Identity",
    "TokenIdentity",
    "config_home",
    "default_config_path",
    "default_secrets_dir",
]
