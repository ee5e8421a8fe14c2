"""Credential resolution for App and stored-token identities."""

from git_app_auth.auth.assertion import AssertionGenerator, load_private_key, read_key_file
from git_app_auth.auth.authenticator import Authenticator, Credential
from git_app_auth.auth.host_client import GitHubAppClient, InstallationToken, api_base_for
from git_app_auth.auth.token_cache import CacheKey, CachedToken, TokenCache

__all__ = [
    "AssertionGenerator",
    "Authenticator",
    "CacheKey",
    "CachedToken",
    "Credential",
    "GitHubAppClient",
    "InstallationToken",
    "TokenCache",
    "api_base_for",
    "load_private_key",
    "read_key_file",
]
