"""Signed App assertions.

An App proves who it is by presenting a short-lived RS256 JWT signed with
its private key. The host accepts at most ten minutes of validity, so the
window is fixed rather than configurable:

    header: {"alg": "RS256", "typ": "JWT"}
    claims: {"iss": "<app id>", "iat": now, "exp": now + 600}

Assertions are generated fresh for every exchange and never cached or
logged.
"""

from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from git_app_auth.credentials.file_backend import check_owner_only
from git_app_auth.exceptions import AssertionFormatError, CryptographicError, KeyFormatError, SecretNotFoundError

Clock = Callable[[], datetime]

ALGORITHM = "RS256"
PEM_MARKER = b"-----BEGIN"


def utc_now() -> datetime:
    return datetime.now(UTC)


def load_private_key(pem: str | bytes | bytearray) -> RSAPrivateKey:
    """Parse a PEM-encoded RSA private key (PKCS#1 or PKCS#8).

    Raises:
        KeyFormatError: If the data is not PEM or the key is not RSA
    """
    data = pem.encode("utf-8") if isinstance(pem, str) else bytes(pem)
    if PEM_MARKER not in data:
        raise KeyFormatError("failed to parse PEM block")

    try:
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyFormatError("failed to parse PEM block") from e

    if not isinstance(key, RSAPrivateKey):
        raise KeyFormatError(f"unsupported private key type: {type(key).__name__}")
    return key


def read_key_file(path: Path) -> bytearray:
    """Read a private key file into a wipeable buffer.

    Raises:
        SecretNotFoundError: If the file is missing or unreadable
        KeyPermissionError: If the file is accessible by group or others
    """
    try:
        check_owner_only(path)
        with open(path, "rb") as f:
            return bytearray(f.read())
    except FileNotFoundError as e:
        raise SecretNotFoundError(
            f"failed to load private key: {path} does not exist",
            suggestion="Check private_key_path in the configuration",
        ) from e
    except OSError as e:
        raise SecretNotFoundError(f"failed to load private key: {e.strerror}", reference=str(path)) from e


class AssertionGenerator:
    """Builds and structurally validates App assertions.

    Example:
        >>> generator = AssertionGenerator()
        >>> assertion = generator.sign(123456, pem)
        >>> generator.validate(assertion)["iss"]
        '123456'
    """

    WINDOW_SECONDS = 600

    def __init__(self, clock: Clock | None = None) -> None:
        """Initialize the generator.

        Args:
            clock: Returns the current UTC time (default: datetime.now(UTC))
        """
        self.clock = clock or utc_now

    def claims(self, app_id: int) -> dict[str, Any]:
        """Claims for an assertion issued now."""
        issued_at = int(self.clock().timestamp())
        return {
            "iss": str(app_id),
            "iat": issued_at,
            "exp": issued_at + self.WINDOW_SECONDS,
        }

    def sign(self, app_id: int, private_key: str | bytes | bytearray | RSAPrivateKey) -> str:
        """Sign a fresh assertion for an App.

        Args:
            app_id: Numeric App id, used as the issuer
            private_key: PEM data or an already parsed RSA key

        Returns:
            Compact JWT string

        Raises:
            KeyFormatError: If the key cannot be parsed
            CryptographicError: If signing fails
        """
        if app_id <= 0:
            raise ValueError("app_id must be positive")

        key = private_key if isinstance(private_key, RSAPrivateKey) else load_private_key(private_key)

        try:
            return jwt.encode(self.claims(app_id), key, algorithm=ALGORITHM)
        except (ValueError, TypeError, jwt.PyJWTError) as e:
            raise CryptographicError(f"failed to sign assertion: {type(e).__name__}") from e

    def validate(self, assertion: str) -> dict[str, Any]:
        """Check an assertion's structure without verifying its signature.

        Used for self-diagnostics only, never for trust decisions.

        Returns:
            The decoded claims

        Raises:
            AssertionFormatError: If the assertion is malformed
        """
        parts = assertion.split(".") if assertion else []
        if len(parts) != 3 or not all(parts):
            raise AssertionFormatError("assertion must have three non-empty dot-separated parts")

        try:
            header = jwt.get_unverified_header(assertion)
            claims = jwt.decode(assertion, options={"verify_signature": False})
        except jwt.PyJWTError as e:
            raise AssertionFormatError(f"assertion cannot be decoded: {e}") from e

        if header.get("alg") != ALGORITHM:
            raise AssertionFormatError(f"unsupported algorithm: {header.get('alg')}")

        for claim in ("iat", "exp"):
            if not isinstance(claims.get(claim), int):
                raise AssertionFormatError(f"missing or non-integer claim: {claim}")
        if not claims.get("iss"):
            raise AssertionFormatError("missing claim: iss")
        if claims["exp"] <= claims["iat"]:
            raise AssertionFormatError("assertion expires before it is issued")

        return claims
