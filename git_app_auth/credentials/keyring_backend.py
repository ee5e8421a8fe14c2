"""OS-level keyring backend using system credential stores.

Platform Support:
- Linux: Secret Service API (GNOME Keyring, KWallet)
- macOS: Keychain
- Windows: Windows Credential Locker
"""

import logging
from typing import cast

try:
    import keyring
    from keyring.errors import KeyringError, PasswordDeleteError

    KEYRING_AVAILABLE = True
except ImportError:
    KEYRING_AVAILABLE = False

from git_app_auth.exceptions import BackendNotAvailableError, CredentialError

logger = logging.getLogger(__name__)

SERVICE_PREFIX = "git-app-auth"


class KeyringBackend:
    """Encrypted secret storage using the system keyring.

    This is the preferred backend: the platform store encrypts secrets at
    rest and ties them to the user's login session.

    Example:
        >>> backend = KeyringBackend()
        >>> backend.set('ci-bot', 'private_key', pem)
        >>> pem = backend.get('ci-bot', 'private_key')
        >>> backend.delete('ci-bot', 'private_key')
    """

    @property
    def name(self) -> str:
        """Get backend identifier.

        Returns:
            Backend name constant "keyring"
        """
        return "keyring"

    @property
    def available(self) -> bool:
        """Check if keyring is available.

        Returns False if:
        - keyring package not installed
        - Only the null backend is configured (headless systems)
        - Backend fails to initialize
        """
        if not KEYRING_AVAILABLE:
            return False

        try:
            # The fail.Keyring fallback reports priority 0
            return bool(keyring.get_keyring().priority > 0)
        except Exception as e:
            logger.debug(f"Keyring not available: {e}")
            return False

    @staticmethod
    def _service(service: str) -> str:
        return f"{SERVICE_PREFIX}/{service}"

    def get(self, service: str, key: str) -> str | None:
        """Retrieve a secret from the OS keyring.

        Args:
            service: Identity name
            key: Secret kind

        Returns:
            Secret value or None if not found

        Raises:
            BackendNotAvailableError: If keyring is not available
            CredentialError: If keyring operation fails
        """
        if not self.available:
            raise BackendNotAvailableError(
                "Keyring backend is not available",
                suggestion="Install a keyring service (gnome-keyring, KWallet, macOS Keychain)",
            )

        try:
            secret = cast(str | None, keyring.get_password(self._service(service), key))

            if secret is not None:
                logger.debug(f"Retrieved secret from keyring: {service}/{key}")

            return secret

        except KeyringError as e:
            raise CredentialError(f"Keyring operation failed: {e}", reference=f"{service}/{key}") from e

    def set(self, service: str, key: str, value: str) -> None:
        """Store a secret in the OS keyring.

        Args:
            service: Identity name
            key: Secret kind
            value: Secret value

        Raises:
            BackendNotAvailableError: If keyring is not available
            CredentialError: If keyring operation fails
        """
        if not value:
            raise ValueError("Secret value cannot be empty")

        if not self.available:
            raise BackendNotAvailableError(
                "Keyring backend is not available",
                suggestion="Install a keyring service (gnome-keyring, KWallet, macOS Keychain)",
            )

        try:
            keyring.set_password(self._service(service), key, value)
            logger.info(f"Stored secret in keyring: {service}/{key}")

        except KeyringError as e:
            raise CredentialError(f"Failed to store secret: {e}", reference=f"{service}/{key}") from e

    def delete(self, service: str, key: str) -> bool:
        """Delete a secret from the OS keyring.

        Args:
            service: Identity name
            key: Secret kind

        Returns:
            True if deleted, False if not found

        Raises:
            BackendNotAvailableError: If keyring is not available
            CredentialError: If keyring operation fails
        """
        if not self.available:
            raise BackendNotAvailableError("Keyring backend is not available")

        try:
            keyring.delete_password(self._service(service), key)
            logger.info(f"Deleted secret from keyring: {service}/{key}")
            return True

        except PasswordDeleteError:
            # Secret doesn't exist - not an error
            return False

        except KeyringError as e:
            raise CredentialError(f"Failed to delete secret: {e}", reference=f"{service}/{key}") from e
