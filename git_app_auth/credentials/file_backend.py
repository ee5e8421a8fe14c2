"""Permission-restricted file backend.

Fallback for systems without a usable keyring (CI runners, containers,
headless servers). Each secret lives in its own file:

    <root>/<quoted identity name>/<secret kind>

Security Model:
- Root and identity directories are created 0700
- Secret files are created 0600 and replaced atomically
- A secret file readable by group or others is refused on read
- Contents are plaintext; protection relies on file ownership only
"""

import contextlib
import logging
import os
import stat
from pathlib import Path
from urllib.parse import quote

from git_app_auth.config.paths import default_secrets_dir
from git_app_auth.exceptions import CredentialError, KeyPermissionError

logger = logging.getLogger(__name__)


class FileBackend:
    """Owner-only file storage for secrets.

    Example:
        >>> backend = FileBackend(Path("/tmp/secrets"))
        >>> backend.set('ci-bot', 'access_token', 'ghp_abc123')
        >>> token = backend.get('ci-bot', 'access_token')
    """

    def __init__(self, root: Path | None = None) -> None:
        """Initialize file backend.

        Args:
            root: Directory holding secret files (default:
                ~/.config/git-app-auth/secrets)
        """
        self.root = root or default_secrets_dir()

    @property
    def name(self) -> str:
        """Get backend identifier.

        Returns:
            Backend name constant "file"
        """
        return "file"

    @property
    def available(self) -> bool:
        """The file backend is always usable; write errors surface on set()."""
        return True

    def path_for(self, service: str, key: str) -> Path:
        """Return the file holding a secret."""
        return self.root / quote(service, safe="") / quote(key, safe="")

    def get(self, service: str, key: str) -> str | None:
        """Retrieve a secret from its file.

        Args:
            service: Identity name
            key: Secret kind

        Returns:
            Secret value or None if the file does not exist

        Raises:
            KeyPermissionError: If the file is accessible by group or others
            CredentialError: If the file cannot be read
        """
        path = self.path_for(service, key)
        if not path.exists():
            return None

        check_owner_only(path)

        try:
            value = path.read_text(encoding="utf-8")
        except OSError as e:
            raise CredentialError(f"Failed to read secret file: {e}", reference=f"{service}/{key}") from e

        logger.debug(f"Retrieved secret from file: {service}/{key}")
        return value

    def set(self, service: str, key: str, value: str) -> None:
        """Store a secret in an owner-only file.

        Args:
            service: Identity name
            key: Secret kind
            value: Secret value

        Raises:
            CredentialError: If the file cannot be written
        """
        if not value:
            raise ValueError("Secret value cannot be empty")

        path = self.path_for(service, key)
        temp_file = path.with_name(path.name + ".tmp")

        try:
            # mkdir modes are subject to the umask, so both levels are chmodded
            for directory in (self.root, path.parent):
                directory.mkdir(parents=True, exist_ok=True, mode=0o700)
                directory.chmod(0o700)

            # Created 0600 before any content is written
            fd = os.open(temp_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)

            try:
                temp_file.chmod(0o600)
            except OSError as e:
                logger.warning(f"Could not set file permissions: {e}")

            # Atomic rename
            temp_file.replace(path)

        except OSError as e:
            raise CredentialError(f"Failed to write secret file: {e}", reference=f"{service}/{key}") from e

        logger.info(f"Stored secret in file: {service}/{key}")

    def delete(self, service: str, key: str) -> bool:
        """Delete a secret file.

        Args:
            service: Identity name
            key: Secret kind

        Returns:
            True if deleted, False if not found

        Raises:
            CredentialError: If the file exists but cannot be removed
        """
        path = self.path_for(service, key)

        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise CredentialError(f"Failed to delete secret file: {e}", reference=f"{service}/{key}") from e

        # Remove the identity directory once empty
        with contextlib.suppress(OSError):
            path.parent.rmdir()

        logger.info(f"Deleted secret file: {service}/{key}")
        return True


def check_owner_only(path: Path) -> None:
    """Refuse files that grant any permission to group or others.

    Skipped on Windows, where POSIX mode bits do not describe access.

    Raises:
        KeyPermissionError: If the file mode has any group/other bit set
    """
    if os.name == "nt":
        return

    mode = stat.S_IMODE(path.stat().st_mode)
    if mode & 0o077:
        raise KeyPermissionError(
            f"{path} has overly permissive permissions {oct(mode)}",
            suggestion=f"Restrict it with: chmod 600 {path}",
        )
