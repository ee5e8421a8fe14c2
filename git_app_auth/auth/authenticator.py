"""Turns a matched identity into a credential git can present.

Resolution per identity kind:

    token identity:
        Secret Store (name, access_token) -> credential. No cache, no network.

    App identity:
        installation id (configured or previously discovered)
          -> cache hit: return cached token
          -> miss: private key -> sign assertion -> discover installation
             if unknown -> exchange -> cache -> return

Any failing step raises AuthenticationError tagged with the identity and
the stage, chained to the underlying error. Nothing is cached on failure
and nothing is retried; retry policy belongs to the caller.
"""

import asyncio
import contextlib
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime

import structlog

from git_app_auth.auth.assertion import AssertionGenerator, read_key_file
from git_app_auth.auth.host_client import GitHubAppClient
from git_app_auth.auth.token_cache import CacheKey, TokenCache
from git_app_auth.config.settings import AppIdentity, Identity, TokenIdentity
from git_app_auth.credentials.store import SecretStore
from git_app_auth.enums import AuthStage, IdentityKind, KeySource, SecretKind
from git_app_auth.exceptions import AuthenticationError, GitAppAuthError
from git_app_auth.git.parser import GitUrlParser
from git_app_auth.utils.secrets import fingerprint, wipe

log = structlog.get_logger(__name__)

# Errors a stage converts into AuthenticationError
STAGE_FAILURES = (GitAppAuthError, OSError, TimeoutError, ValueError)


@dataclass(frozen=True)
class Credential:
    """Username and secret to hand back to git.

    Attributes:
        username: Basic-auth username
        secret: Token to use as the password
        identity: Name of the identity that produced it
        expires_at: When the credential stops being served, None if unknown
        from_cache: Whether the token came from the cache
    """

    username: str
    secret: str = field(repr=False)
    identity: str
    expires_at: datetime | None = None
    from_cache: bool = False

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.secret)


@contextlib.contextmanager
def _stage(stage: AuthStage, identity: str) -> Iterator[None]:
    """Re-raise any failure inside the block as AuthenticationError tagged with the stage."""
    try:
        yield
    except AuthenticationError:
        raise
    except STAGE_FAILURES as e:
        log.warning("authentication_failed", identity=identity, stage=str(stage), error_type=type(e).__name__)
        message = "timed out" if isinstance(e, TimeoutError) else (str(e) or type(e).__name__)
        raise AuthenticationError(message, stage=stage, identity=identity) from e


class Authenticator:
    """Obtains credentials for identities.

    Attributes:
        secret_store: Source of private keys and stored tokens
        cache: Installation token cache
        client: Host API client
        assertions: Assertion generator
    """

    def __init__(
        self,
        secret_store: SecretStore,
        cache: TokenCache,
        client: GitHubAppClient,
        assertions: AssertionGenerator | None = None,
    ) -> None:
        self.secret_store = secret_store
        self.cache = cache
        self.client = client
        self.assertions = assertions or AssertionGenerator()
        # (app_id, host, owner) -> installation id found through the API
        self._installations: dict[tuple[int, str, str], int] = {}

    async def get_credential(
        self,
        identity: Identity,
        target_url: str,
        timeout: float | None = None,
    ) -> Credential:
        """Resolve a credential for an identity and target URL.

        Args:
            identity: The identity selected by the router
            target_url: Repository URL being accessed
            timeout: Deadline in seconds for the network part, None for no limit

        Returns:
            The credential

        Raises:
            AuthenticationError: If any stage fails
        """
        if isinstance(identity, TokenIdentity):
            return await self._token_credential(identity)
        return await self._app_credential(identity, target_url, timeout)

    async def _token_credential(self, identity: TokenIdentity) -> Credential:
        with _stage(AuthStage.SECRET, identity.name):
            token, backend = await self.secret_store.get(identity.name, SecretKind.ACCESS_TOKEN)

        log.debug("stored_token_resolved", identity=identity.name, backend=str(backend))
        return Credential(username=identity.presented_username, secret=token, identity=identity.name)

    def installation_for(self, identity: AppIdentity, host: str, owner: str | None) -> int | None:
        """Configured or previously discovered installation id."""
        if identity.installation_known:
            return identity.installation_id
        if owner is None:
            return None
        return self._installations.get((identity.app_id, host, owner))

    def forget_installations(self, app_id: int) -> None:
        """Drop discovered installation ids for an App."""
        for key in [k for k in self._installations if k[0] == app_id]:
            del self._installations[key]

    async def _app_credential(self, identity: AppIdentity, target_url: str, timeout: float | None) -> Credential:
        with _stage(AuthStage.DISCOVERY, identity.name):
            target = GitUrlParser(target_url)

        installation_id = self.installation_for(identity, target.authority, target.owner)
        if installation_id:
            key = CacheKey(IdentityKind.APP, identity.app_id, installation_id)
            cached = await self.cache.get_entry(key)
            if cached is not None:
                token, expires_at = cached
                return Credential(
                    username=identity.bot_username,
                    secret=token,
                    identity=identity.name,
                    expires_at=expires_at,
                    from_cache=True,
                )

        assertion = await self._sign(identity)

        stage = AuthStage.EXCHANGE if installation_id else AuthStage.DISCOVERY
        try:
            async with asyncio.timeout(timeout):
                if not installation_id:
                    installation_id = await self._discover(identity, target, assertion)

                stage = AuthStage.EXCHANGE
                with _stage(AuthStage.EXCHANGE, identity.name):
                    issued = await self.client.create_installation_token(
                        target.authority, assertion, installation_id
                    )
        except TimeoutError as e:
            log.warning("authentication_timed_out", identity=identity.name, stage=str(stage), timeout=timeout)
            raise AuthenticationError(f"timed out after {timeout}s", stage=stage, identity=identity.name) from e

        key = CacheKey(IdentityKind.APP, identity.app_id, installation_id)
        entry = await self.cache.put(key, issued.token, issued.expires_at)
        log.info(
            "installation_token_issued",
            identity=identity.name,
            installation_id=installation_id,
            host_expiry=issued.expires_at.isoformat(),
        )
        return Credential(
            username=identity.bot_username,
            secret=issued.token,
            identity=identity.name,
            expires_at=entry.expires_at,
        )

    async def _sign(self, identity: AppIdentity) -> str:
        with _stage(AuthStage.SECRET, identity.name):
            key = await self._load_private_key(identity)

        try:
            with _stage(AuthStage.SIGNING, identity.name):
                return self.assertions.sign(identity.app_id, key)
        finally:
            wipe(key)

    async def _load_private_key(self, identity: AppIdentity) -> bytearray:
        if identity.private_key_source == KeySource.FILESYSTEM and identity.private_key_path is not None:
            return await asyncio.to_thread(read_key_file, identity.private_key_path)

        pem, _ = await self.secret_store.get(identity.name, SecretKind.PRIVATE_KEY)
        return bytearray(pem.encode("utf-8"))

    async def _discover(self, identity: AppIdentity, target: GitUrlParser, assertion: str) -> int:
        with _stage(AuthStage.DISCOVERY, identity.name):
            if target.owner is None or target.repo is None:
                raise ValueError(f"cannot discover installation: {target.normalized} does not name a repository")

            installation_id = await self.client.get_repository_installation(
                target.authority, assertion, target.owner, target.repo
            )

        self._installations[(identity.app_id, target.authority, target.owner)] = installation_id
        return installation_id
