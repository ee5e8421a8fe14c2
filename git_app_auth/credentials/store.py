"""Secret Store: ordered fallback across the keyring and file backends.

Lookup and storage always try the encrypted platform keyring first and the
owner-only file backend second. Backend availability may differ between
processes (a desktop session versus a cron job on the same machine), so
``get`` checks both backends regardless of where ``store`` last succeeded.

Every backend call runs in a worker thread and is bounded by a fixed
timeout; a hung keyring daemon degrades to the file backend instead of
blocking the credential helper.

Example:
    >>> store = SecretStore()
    >>> backend = await store.store("ci-bot", SecretKind.PRIVATE_KEY, pem)
    >>> pem, backend = await store.get("ci-bot", SecretKind.PRIVATE_KEY)
"""

import asyncio
from collections.abc import Callable
from typing import TypeVar

import structlog

from git_app_auth.credentials.backend import SecretBackend
from git_app_auth.credentials.file_backend import FileBackend
from git_app_auth.credentials.keyring_backend import KeyringBackend
from git_app_auth.enums import BackendName, SecretKind
from git_app_auth.exceptions import CredentialError, KeyPermissionError, SecretNotFoundError

log = structlog.get_logger(__name__)

T = TypeVar("T")

# Failures that make a backend fall through to the next one
BACKEND_FAILURES = (CredentialError, OSError, TimeoutError)


class SecretStore:
    """Uniform get/set/delete for private keys and stored tokens.

    Attributes:
        keyring: Encrypted platform backend (tried first)
        file: Owner-only file backend (fallback)
        timeout: Hard limit in seconds for a single backend call
    """

    DEFAULT_TIMEOUT = 3.0
    PROBE_SERVICE = "__availability_probe__"

    def __init__(
        self,
        keyring: SecretBackend | None = None,
        file: SecretBackend | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the store.

        Args:
            keyring: Encrypted backend (default: KeyringBackend())
            file: File backend (default: FileBackend() under the config dir)
            timeout: Seconds before a backend call is abandoned
        """
        self.keyring: SecretBackend = keyring or KeyringBackend()
        self.file: SecretBackend = file or FileBackend()
        self.timeout = timeout

    @property
    def backends(self) -> tuple[tuple[BackendName, SecretBackend], ...]:
        """Backends in lookup order."""
        return ((BackendName.KEYRING, self.keyring), (BackendName.FILE, self.file))

    async def _call(self, func: Callable[..., T], *args: str) -> T:
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)

    async def store(self, name: str, kind: SecretKind, value: str) -> BackendName:
        """Store a secret, preferring the keyring.

        On keyring success any plaintext file copy for the same secret is
        removed. On keyring failure (unavailable, error or timeout) the
        secret is written to the file backend instead.

        Args:
            name: Identity name
            kind: Secret kind
            value: Secret value

        Returns:
            The backend that now holds the secret

        Raises:
            ValueError: If value is empty
            CredentialError: If the file fallback also fails
        """
        if not value:
            raise ValueError("Secret value cannot be empty")

        try:
            await self._call(self.keyring.set, name, kind.value, value)
        except BACKEND_FAILURES as e:
            log.warning(
                "keyring_store_failed",
                identity=name,
                kind=kind.value,
                error_type=type(e).__name__,
                fallback=BackendName.FILE.value,
            )
        else:
            await self._discard_file_copy(name, kind)
            log.info("secret_stored", identity=name, kind=kind.value, backend=BackendName.KEYRING.value)
            return BackendName.KEYRING

        await self._call(self.file.set, name, kind.value, value)
        await self._discard_stale_copy(BackendName.KEYRING, self.keyring, name, kind)
        log.info("secret_stored", identity=name, kind=kind.value, backend=BackendName.FILE.value)
        return BackendName.FILE

    async def _discard_file_copy(self, name: str, kind: SecretKind) -> None:
        await self._discard_stale_copy(BackendName.FILE, self.file, name, kind)

    async def _discard_stale_copy(
        self, backend_name: BackendName, backend: SecretBackend, name: str, kind: SecretKind
    ) -> None:
        """Best-effort removal of an older copy held by the backend that was not written."""
        try:
            if await self._call(backend.delete, name, kind.value):
                log.info("stale_copy_removed", identity=name, kind=kind.value, backend=backend_name.value)
        except BACKEND_FAILURES as e:
            log.warning(
                "stale_copy_not_removed",
                identity=name,
                kind=kind.value,
                backend=backend_name.value,
                error_type=type(e).__name__,
            )

    async def get(self, name: str, kind: SecretKind) -> tuple[str, BackendName]:
        """Retrieve a secret from the first backend that has it.

        Args:
            name: Identity name
            kind: Secret kind

        Returns:
            Tuple of (secret value, backend it came from)

        Raises:
            SecretNotFoundError: If no backend holds the secret
            KeyPermissionError: If the file copy is readable by others
        """
        last_error: Exception | None = None

        for backend_name, backend in self.backends:
            try:
                value = await self._call(backend.get, name, kind.value)
            except KeyPermissionError:
                raise
            except BACKEND_FAILURES as e:
                log.debug("secret_backend_skipped", backend=backend_name.value, error_type=type(e).__name__)
                last_error = e
                continue

            if value:
                log.debug("secret_found", identity=name, kind=kind.value, backend=backend_name.value)
                return value, backend_name

        raise SecretNotFoundError(
            f"No {kind.value} stored for identity {name!r}",
            reference=f"{name}/{kind.value}",
            suggestion=f"Store it with: git-app-auth secrets set {name} --kind {kind.value}",
        ) from last_error

    async def delete(self, name: str, kind: SecretKind) -> bool:
        """Delete a secret from every backend.

        Returns:
            True if at least one backend held the secret
        """
        deleted = False
        for backend_name, backend in self.backends:
            try:
                deleted = await self._call(backend.delete, name, kind.value) or deleted
            except BACKEND_FAILURES as e:
                log.warning("secret_delete_failed", backend=backend_name.value, identity=name, error=str(e))
        return deleted

    async def available(self) -> bool:
        """Probe the keyring with a throwaway write and delete.

        Returns:
            True if the keyring completed the round trip within the timeout
        """
        try:
            await self._call(self.keyring.set, self.PROBE_SERVICE, "probe", "probe")
            await self._call(self.keyring.delete, self.PROBE_SERVICE, "probe")
        except BACKEND_FAILURES as e:
            log.debug("keyring_probe_failed", error_type=type(e).__name__)
            return False
        return True
