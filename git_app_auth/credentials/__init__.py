"""Secret storage for private keys and stored access tokens.

Two backends sit behind one interface:
    - keyring: OS-level encrypted storage (macOS Keychain, GNOME Keyring,
      Windows Credential Manager). Preferred.
    - file: owner-only (0600) files under the config directory. Fallback
      for headless systems.

SecretStore orchestrates the fallback between them.
"""

from git_app_auth.credentials.backend import SecretBackend
from git_app_auth.credentials.file_backend import FileBackend, check_owner_only
from git_app_auth.credentials.keyring_backend import KeyringBackend
from git_app_auth.credentials.store import SecretStore
from git_app_auth.exceptions import (
    BackendNotAvailableError,
    CredentialError,
    KeyPermissionError,
    SecretNotFoundError,
)

__all__ = [
    "SecretBackend",
    "SecretStore",
    "KeyringBackend",
    "FileBackend",
    "check_owner_only",
    "CredentialError",
    "SecretNotFoundError",
    "BackendNotAvailableError",
    "KeyPermissionError",
]
