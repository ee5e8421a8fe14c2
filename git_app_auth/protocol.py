"""Git credential helper protocol.

git writes ``key=value`` lines to the helper's stdin, terminated by a blank
line or end of input, and reads the answer from stdout in the same format:

    protocol=https
    host=github.com
    path=my-org/infra.git

Only ``get`` produces output. ``store`` and ``erase`` are accepted and
ignored: tokens are issued on demand and never persisted by the helper.
Printing nothing for ``get`` tells git to try its next helper.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from git_app_auth.auth.authenticator import Credential

OPERATIONS = ("get", "store", "erase")


@dataclass
class CredentialRequest:
    """Attributes git sent for one helper invocation."""

    protocol: str | None = None
    host: str | None = None
    path: str | None = None
    username: str | None = None
    extra: dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, lines: Iterable[str]) -> "CredentialRequest":
        """Parse request lines until a blank line.

        A ``url=`` attribute is split into protocol, host and path; explicit
        attributes that follow it take precedence. Lines without ``=`` are
        ignored, unknown keys are kept in ``extra``.
        """
        request = cls()
        for raw in lines:
            line = raw.rstrip("\r\n")
            if not line:
                break
            key, sep, value = line.partition("=")
            if not sep:
                continue

            if key == "url":
                parts = urlsplit(value)
                request.protocol = parts.scheme or request.protocol
                request.host = parts.netloc.rpartition("@")[2] or request.host
                request.path = parts.path.lstrip("/") or request.path
            elif key in ("protocol", "host", "path", "username"):
                setattr(request, key, value)
            else:
                request.extra[key] = value
        return request

    @property
    def target_url(self) -> str | None:
        """The URL git is asking about, or None without a host."""
        if not self.host:
            return None
        url = f"{self.protocol or 'https'}://{self.host}"
        if self.path:
            url = f"{url}/{self.path.lstrip('/')}"
        return url


def format_response(credential: Credential) -> str:
    """Render a credential as the helper's stdout."""
    return f"username={credential.username}\npassword={credential.secret}\n\n"
