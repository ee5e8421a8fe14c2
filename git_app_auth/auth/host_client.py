"""App API client for the version-control host.

Two calls, both authenticated with a signed App assertion:

    POST /app/installations/{id}/access_tokens   -> installation token
    GET  /repos/{owner}/{repo}/installation      -> installation id

github.com is served from api.github.com; any other host is treated as an
Enterprise Server with its API under ``https://<host>/api/v3``.

Requests are never retried here. Response bodies are never copied into
exceptions or logs since the token endpoint's body is the secret.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from git_app_auth.exceptions import HostAPIError, InstallationNotFoundError

log = structlog.get_logger(__name__)

PUBLIC_HOST = "github.com"
PUBLIC_API = "https://api.github.com"
API_VERSION = "2022-11-28"


def api_base_for(host: str) -> str:
    """Return the REST API base URL for a host (may include a port)."""
    host = host.lower()
    if host in (PUBLIC_HOST, f"www.{PUBLIC_HOST}"):
        return PUBLIC_API
    return f"https://{host}/api/v3"


@dataclass(frozen=True)
class InstallationToken:
    """An installation access token and its host-declared expiry."""

    token: str
    expires_at: datetime

    def __repr__(self) -> str:
        return f"InstallationToken(token=<redacted>, expires_at={self.expires_at.isoformat()})"


class GitHubAppClient:
    """Async client for the two App endpoints.

    Example:
        >>> async with GitHubAppClient() as client:
        ...     installation_id = await client.get_repository_installation(
        ...         "github.com", assertion, "my-org", "infra"
        ...     )
        ...     token = await client.create_installation_token("github.com", assertion, installation_id)
    """

    def __init__(
        self,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            timeout: Per-request timeout in seconds. The default None leaves
                deadlines to the caller (see Authenticator.get_credential)
            transport: Optional transport (tests pass httpx.MockTransport)
        """
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazily created HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": API_VERSION,
                    "User-Agent": "git-app-auth",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubAppClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _request(self, method: str, host: str, path: str, assertion: str) -> httpx.Response:
        url = f"{api_base_for(host)}{path}"
        try:
            response = await self.client.request(method, url, headers={"Authorization": f"Bearer {assertion}"})
        except httpx.HTTPError as e:
            log.warning("host_request_failed", method=method, url=url, error_type=type(e).__name__)
            raise HostAPIError(f"{method} {url} failed: {type(e).__name__}") from e

        log.debug("host_response", method=method, url=url, status_code=response.status_code)
        return response

    async def create_installation_token(self, host: str, assertion: str, installation_id: int) -> InstallationToken:
        """Exchange an assertion for an installation access token.

        Raises:
            HostAPIError: On a non-2xx response or a malformed body
        """
        path = f"/app/installations/{installation_id}/access_tokens"
        response = await self._request("POST", host, path, assertion)
        if not response.is_success:
            raise HostAPIError(
                f"Token exchange for installation {installation_id} was rejected",
                status_code=response.status_code,
            )

        try:
            data = response.json()
            token = data["token"]
            expires_at = datetime.fromisoformat(data["expires_at"])
        except (ValueError, KeyError, TypeError) as e:
            raise HostAPIError(
                "Token exchange response is missing token or expires_at", status_code=response.status_code
            ) from e

        if not isinstance(token, str) or not token:
            raise HostAPIError("Token exchange returned an empty token", status_code=response.status_code)
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)

        return InstallationToken(token=token, expires_at=expires_at)

    async def get_repository_installation(self, host: str, assertion: str, owner: str, repo: str) -> int:
        """Look up the App installation covering a repository.

        Raises:
            InstallationNotFoundError: If the App is not installed for the repository
            HostAPIError: On any other non-2xx response or a malformed body
        """
        response = await self._request("GET", host, f"/repos/{owner}/{repo}/installation", assertion)
        if response.status_code == 404:
            raise InstallationNotFoundError(
                f"App is not installed for {owner}/{repo} on {host}", status_code=response.status_code
            )
        if not response.is_success:
            raise HostAPIError(f"Installation lookup for {owner}/{repo} failed", status_code=response.status_code)

        try:
            installation_id = int(response.json()["id"])
        except (ValueError, KeyError, TypeError) as e:
            raise HostAPIError("Installation lookup response has no id", status_code=response.status_code) from e

        log.debug("installation_discovered", host=host, owner=owner, repo=repo, installation_id=installation_id)
        return installation_id
