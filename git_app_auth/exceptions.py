"""Exception hierarchy for git-app-auth.

Every failure the credential engine can report derives from a single base
class so that the CLI layer can catch them with one except clause and print
an actionable message. No exception message ever contains a private key, a
signed assertion or an access token.

Exception Hierarchy:
    GitAppAuthError (base)
    ├── ConfigurationError
    ├── CredentialError
    │   ├── SecretNotFoundError
    │   ├── BackendNotAvailableError
    │   └── KeyPermissionError
    ├── CryptographicError
    │   ├── KeyFormatError
    │   └── AssertionFormatError
    ├── HostAPIError
    │   └── InstallationNotFoundError
    ├── AuthenticationError
    └── InvalidGitUrlError

"No identity matches this URL" is deliberately not an exception: the router
returns None and the credential helper abstains.

Example Usage:
    >>> from git_app_auth.exceptions import ConfigurationError
    >>> try:
    ...     settings = AuthSettings.from_file(path)
    ... except FileNotFoundError as e:
    ...     raise ConfigurationError(f"Config file not found: {path}") from e
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from git_app_auth.enums import AuthStage


class GitAppAuthError(Exception):
    """Base exception for all git-app-auth errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        """Initialize exception.

        Args:
            message: Error message
        """
        self.message = message
        super().__init__(message)


class ConfigurationError(GitAppAuthError):
    """Configuration-related errors.

    Raised at load time when the configuration file is missing, unparsable
    or describes an invalid identity. Never raised during resolution.

    Examples:
        - Configuration file not found
        - Invalid YAML/JSON syntax
        - App identity without a positive app_id
        - Blank or malformed URL pattern
    """

    pass


class CredentialError(GitAppAuthError):
    """Secret storage errors.

    Base class for failures of the Secret Store and its backends.

    Attributes:
        message: Human-readable error description
        reference: The secret that failed (e.g., "ci-bot/private_key")
        suggestion: Optional suggestion for resolution
    """

    def __init__(
        self,
        message: str,
        reference: str | None = None,
        suggestion: str | None = None,
    ) -> None:
        """Initialize exception.

        Args:
            message: Error message
            reference: The secret reference that failed
            suggestion: Optional suggestion for resolution
        """
        self.reference = reference
        self.suggestion = suggestion

        full_message = message
        if reference:
            full_message = f"{message} (reference: {reference})"
        if suggestion:
            full_message = f"{full_message}\nSuggestion: {suggestion}"

        super().__init__(full_message)
        # Preserve original message (super sets self.message to full_message)
        self.message = message


class SecretNotFoundError(CredentialError):
    """Secret is missing or unreadable in every backend."""

    pass


class BackendNotAvailableError(CredentialError):
    """Requested backend is not available on this system."""

    pass


class KeyPermissionError(CredentialError):
    """A key or secret file is readable by group or others."""

    pass


class CryptographicError(GitAppAuthError):
    """Signing or key parsing failed.

    These errors are never retried: a key that cannot be parsed now will
    not become parsable within the same invocation.
    """

    pass


class KeyFormatError(CryptographicError):
    """Private key is not a PEM-encoded RSA key in PKCS#1 or PKCS#8 form."""

    pass


class AssertionFormatError(CryptographicError):
    """A signed assertion is structurally invalid."""

    pass


class HostAPIError(GitAppAuthError):
    """The version-control host rejected a request or could not be reached.

    Attributes:
        message: Error message
        status_code: HTTP status code, None for transport failures
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """Initialize exception.

        Args:
            message: Error message
            status_code: HTTP status code (if applicable)
        """
        self.status_code = status_code

        full_message = message
        if status_code:
            full_message = f"{message} (HTTP {status_code})"

        super().__init__(full_message)
        self.message = message


class InstallationNotFoundError(HostAPIError):
    """The App has no installation covering the requested repository."""

    pass


class AuthenticationError(GitAppAuthError):
    """Credential resolution failed for a matched identity.

    Wraps the underlying error (available as ``__cause__``) and tags it with
    the identity that matched and the stage that failed, so the caller can
    decide whether a retry makes sense.

    Attributes:
        message: Error message
        stage: Stage that failed
        identity: Name of the identity being resolved
    """

    def __init__(self, message: str, stage: AuthStage, identity: str) -> None:
        """Initialize exception.

        Args:
            message: Error message
            stage: Stage that failed
            identity: Name of the matched identity
        """
        self.stage = stage
        self.identity = identity
        super().__init__(f"{message} (identity: {identity}, stage: {stage})")
        self.message = message


class InvalidGitUrlError(GitAppAuthError):
    """A repository URL could not be parsed.

    Attributes:
        url: The URL that failed to parse
        reason: Why it was rejected
    """

    def __init__(self, url: str, reason: str | None = None) -> None:
        """Initialize exception.

        Args:
            url: The URL that failed to parse
            reason: Why it was rejected
        """
        self.url = url
        self.reason = reason

        message = f"Invalid Git URL '{url}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
