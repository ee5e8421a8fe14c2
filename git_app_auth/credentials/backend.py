"""Backend protocol for secret storage."""

from typing import Protocol


class SecretBackend(Protocol):
    """Protocol defining the interface for secret storage backends.

    Backends are synchronous and know nothing about each other; ordering,
    fallback and timeouts are the SecretStore's job.
    """

    @property
    def name(self) -> str:
        """Backend identifier ('keyring' or 'file')."""
        ...

    @property
    def available(self) -> bool:
        """Check if this backend is available on the current system."""
        ...

    def get(self, service: str, key: str) -> str | None:
        """Retrieve a secret.

        Args:
            service: Identity name (e.g., 'ci-bot')
            key: Secret kind within the identity (e.g., 'private_key')

        Returns:
            Secret value or None if not found

        Raises:
            BackendNotAvailableError: If backend is not available
        """
        ...

    def set(self, service: str, key: str, value: str) -> None:
        """Store a secret.

        Args:
            service: Identity name
            key: Secret kind within the identity
            value: Secret value to store

        Raises:
            BackendNotAvailableError: If backend is not available
        """
        ...

    def delete(self, service: str, key: str) -> bool:
        """Delete a secret.

        Args:
            service: Identity name
            key: Secret kind within the identity

        Returns:
            True if the secret was deleted, False if not found

        Raises:
            BackendNotAvailableError: If backend is not available
        """
        ...
