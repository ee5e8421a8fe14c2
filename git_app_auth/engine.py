"""Credential resolution engine.

Wires the router, Secret Store, assertion generator, token cache and host
client together behind one object. Every dependency is injectable, so tests
substitute a fake clock, in-memory backends and a mock HTTP transport.

Example:
    >>> settings = AuthSettings.load()
    >>> async with CredentialEngine(settings.identities) as engine:
    ...     credential = await engine.resolve("https://github.com/my-org/infra.git")
    ...     if credential is None:
    ...         pass  # no identity matches: let git try its next helper
"""

from collections.abc import Sequence
from typing import Any

import structlog

from git_app_auth.auth.assertion import AssertionGenerator, Clock
from git_app_auth.auth.authenticator import Authenticator, Credential
from git_app_auth.auth.host_client import GitHubAppClient
from git_app_auth.auth.token_cache import CacheKey, TokenCache
from git_app_auth.config.settings import AppIdentity, Identity
from git_app_auth.credentials.store import SecretStore
from git_app_auth.enums import IdentityKind
from git_app_auth.routing.router import PatternRouter, normalize_url

log = structlog.get_logger(__name__)


class CredentialEngine:
    """Resolves repository URLs to credentials.

    Safe for concurrent use from multiple tasks on one event loop.

    Attributes:
        identities: Configured identities
        router: Pattern router
        authenticator: Credential resolver for matched identities
        cache: Installation token cache
    """

    def __init__(
        self,
        identities: Sequence[Identity],
        secret_store: SecretStore | None = None,
        cache: TokenCache | None = None,
        client: GitHubAppClient | None = None,
        assertions: AssertionGenerator | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            identities: Configured identities
            secret_store: Secret Store (default: keyring with file fallback)
            cache: Token cache (default: TokenCache using ``clock``)
            client: Host API client (default: GitHubAppClient())
            assertions: Assertion generator (default: AssertionGenerator using ``clock``)
            clock: Returns the current UTC time, shared by the default cache and generator
        """
        self.identities = list(identities)
        self.router = PatternRouter()
        self.cache = cache or TokenCache(clock=clock)
        self.client = client or GitHubAppClient()
        self.authenticator = Authenticator(
            secret_store=secret_store or SecretStore(),
            cache=self.cache,
            client=self.client,
            assertions=assertions or AssertionGenerator(clock=clock),
        )

    async def __aenter__(self) -> "CredentialEngine":
        self.cache.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Stop the cache sweep, wipe cached tokens and close the HTTP client."""
        await self.cache.stop()
        await self.client.close()

    def select(self, url: str) -> Identity | None:
        """Pick the identity for a URL, warning when the choice was a tie.

        Returns:
            The winning identity, or None when nothing matches
        """
        # Embedded userinfo is dropped before the URL reaches a log line
        target = normalize_url(url) or "<unparseable>"
        matches = self.router.rank(url, self.identities)
        if not matches:
            log.debug("no_identity_matched", url=target)
            return None

        conflicts = self.router.conflicts(matches)
        if conflicts:
            log.warning(
                "identity_conflict",
                url=target,
                identities=[m.identity.name for m in conflicts],
                winner=matches[0].identity.name,
                match_length=matches[0].length,
            )

        winner = matches[0]
        log.debug("identity_matched", url=target, identity=winner.identity.name, pattern=winner.pattern)
        return winner.identity  # type: ignore[return-value]

    async def resolve(self, url: str, timeout: float | None = None) -> Credential | None:
        """Resolve a URL to a credential.

        Args:
            url: Repository URL
            timeout: Deadline in seconds for host calls, None for no limit

        Returns:
            The credential, or None to abstain when no identity matches

        Raises:
            AuthenticationError: If an identity matched but resolution failed
        """
        identity = self.select(url)
        if identity is None:
            return None
        return await self.resolve_for(identity, url, timeout)

    async def resolve_for(self, identity: Identity, url: str, timeout: float | None = None) -> Credential:
        """Resolve a credential for an already chosen identity."""
        credential = await self.authenticator.get_credential(identity, url, timeout=timeout)
        log.info(
            "credential_resolved",
            identity=identity.name,
            kind=str(identity.kind),
            from_cache=credential.from_cache,
            fingerprint=credential.fingerprint,
        )
        return credential

    def identity(self, name: str) -> Identity | None:
        for identity in self.identities:
            if identity.name == name:
                return identity
        return None

    def identity_for_pattern(self, pattern: str) -> Identity | None:
        """The identity that declares this pattern, compared in normalized form."""
        wanted = self.router.normalized_pattern(pattern.strip())
        if wanted is None:
            return None
        matching = sorted(
            (i for i in self.identities if any(self.router.normalized_pattern(p) == wanted for p in i.patterns)),
            key=lambda i: (-i.priority, i.name),
        )
        return matching[0] if matching else None

    async def invalidate(self, name: str) -> int:
        """Drop cached credentials for an identity, e.g. after it is removed.

        Returns:
            Number of cache entries removed
        """
        identity = self.identity(name)
        if not isinstance(identity, AppIdentity):
            return 0

        self.authenticator.forget_installations(identity.app_id)
        if identity.installation_known:
            key = CacheKey(IdentityKind.APP, identity.app_id, identity.installation_id)
            return int(await self.cache.invalidate(key))
        return await self.cache.invalidate_app(identity.app_id)
