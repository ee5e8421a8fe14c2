"""Helpers for handling secret material in memory and in output.

Python strings are immutable, so secrets that must be cleared are kept in
``bytearray`` buffers and overwritten once they are no longer needed. This
is best effort: copies made by the interpreter or by libraries cannot be
reached.
"""

import hashlib
import re

# Prefixes the host puts on its token types (ghs_ installation, ghp_ personal, ...)
TOKEN_PREFIX = re.compile(r"^(github_pat_|gh[pousr]_)")

# scheme://user:password@ in URLs
URL_USERINFO = re.compile(r"(?P<scheme>[A-Za-z][A-Za-z0-9+.-]*://)[^/@\s]+@")

SECRET_VALUES = (
    re.compile(r"-----BEGIN [A-Z0-9 ]*PRIVATE KEY-----.*?-----END [A-Z0-9 ]*PRIVATE KEY-----", re.DOTALL),
    re.compile(r"\b(?:github_pat_[A-Za-z0-9_]{20,}|gh[pousr]_[A-Za-z0-9]{8,})"),
    re.compile(r"\beyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*"),
)


def fingerprint(value: str | bytes) -> str:
    """Return a short, non-reversible identifier for a secret.

    Uses the first 12 hex digits of the SHA-256 digest.
    """
    data = value.encode("utf-8") if isinstance(value, str) else bytes(value)
    return "sha256:" + hashlib.sha256(data).hexdigest()[:12]


def mask(value: str) -> str:
    """Mask a secret for display.

    Only the token type prefix (``ghs_``, ``github_pat_``) survives; the
    length of the secret is not revealed either.
    """
    match = TOKEN_PREFIX.match(value)
    return (match.group(1) if match else "") + "********"


def scrub(text: str) -> str:
    """Replace credentials embedded in free text.

    URL userinfo becomes ``***``; tokens, JWTs and PEM private keys are
    replaced by their fingerprint.
    """
    text = URL_USERINFO.sub(r"\g<scheme>***@", text)
    for pattern in SECRET_VALUES:
        text = pattern.sub(lambda m: fingerprint(m.group(0)), text)
    return text


def wipe(buffer: bytearray) -> None:
    """Overwrite a buffer with zero bytes in place."""
    for i in range(len(buffer)):
        buffer[i] = 0
