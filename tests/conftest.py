"""Pytest configuration and shared fixtures."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest
import structlog
from click.testing import CliRunner
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from git_app_auth.auth.host_client import GitHubAppClient
from git_app_auth.auth.token_cache import TokenCache
from git_app_auth.config.settings import AppIdentity, AuthSettings, TokenIdentity
from git_app_auth.credentials.store import SecretStore
from git_app_auth.engine import CredentialEngine
from git_app_auth.enums import KeySource
from git_app_auth.exceptions import BackendNotAvailableError, CredentialError
from git_app_auth.utils.logging_config import redact_secrets

START = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class MemoryBackend:
    """In-memory secret backend with switchable availability and failures."""

    def __init__(self, name: str = "memory", available: bool = True) -> None:
        self._name = name
        self._available = available
        self.secrets: dict[tuple[str, str], str] = {}
        self.error: Exception | None = None
        self.calls: list[tuple[str, str, str]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def available(self) -> bool:
        return self._available

    @available.setter
    def available(self, value: bool) -> None:
        self._available = value

    def _check(self, op: str, service: str, key: str) -> None:
        self.calls.append((op, service, key))
        if not self._available:
            raise BackendNotAvailableError(f"{self._name} backend is not available")
        if self.error is not None:
            raise self.error

    def get(self, service: str, key: str) -> str | None:
        self._check("get", service, key)
        return self.secrets.get((service, key))

    def set(self, service: str, key: str, value: str) -> None:
        self._check("set", service, key)
        self.secrets[(service, key)] = value

    def delete(self, service: str, key: str) -> bool:
        self._check("delete", service, key)
        return self.secrets.pop((service, key), None) is not None


class FakeGitHubAPI:
    """httpx.MockTransport handler imitating the two App endpoints.

    Attributes:
        installations: "owner/repo" -> installation id
        token_lifetime: Lifetime of issued tokens on the host clock
        token_status: Status code for token requests (201 unless overridden)
        requests: Every request received
    """

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.installations: dict[str, int] = {"my-org/infra": 987654, "other-org/tools": 555}
        self.token_lifetime = timedelta(hours=1)
        self.token_status = 201
        self.requests: list[httpx.Request] = []
        self.issued = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/api/v3")

        if request.method == "POST" and path.startswith("/app/installations/"):
            if self.token_status >= 400:
                return httpx.Response(self.token_status, json={"message": "Bad credentials"})
            self.issued += 1
            expires_at = self.clock() + self.token_lifetime
            return httpx.Response(
                self.token_status,
                json={
                    "token": f"ghs_issued{self.issued:04d}token",
                    "expires_at": expires_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
                },
            )

        if request.method == "GET" and path.startswith("/repos/") and path.endswith("/installation"):
            repo = path.removeprefix("/repos/").removesuffix("/installation")
            if repo not in self.installations:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json={"id": self.installations[repo]})

        return httpx.Response(404, json={"message": "Not Found"})

    def paths(self, method: str | None = None) -> list[str]:
        return [r.url.path for r in self.requests if method is None or r.method == method]

    @property
    def token_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch: pytest.MonkeyPatch):
    """Keep structlog output off stdout and stop the CLI from rebinding streams.

    Loggers are not cached, so a stream swapped in by CliRunner is never
    reused after it is closed.
    """
    structlog.configure(
        processors=[structlog.processors.add_log_level, redact_secrets, structlog.processors.JSONRenderer()],
        logger_factory=structlog.ReturnLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    monkeypatch.setattr("git_app_auth.main.configure_logging", lambda log_level="WARNING": None)
    yield
    structlog.reset_defaults()


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    """A 2048-bit RSA key shared by the whole session."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_key: rsa.RSAPrivateKey) -> str:
    """PKCS#8 PEM encoding of the session key."""
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


@pytest.fixture(scope="session")
def pkcs1_pem(rsa_key: rsa.RSAPrivateKey) -> str:
    """PKCS#1 ("BEGIN RSA PRIVATE KEY") encoding of the session key."""
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


@pytest.fixture(scope="session")
def ec_key_pem() -> str:
    """A valid PEM key of a type assertions cannot be signed with."""
    key = ec.generate_private_key(ec.SECP256R1())
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


@pytest.fixture
def key_file(tmp_path: Path, private_key_pem: str) -> Path:
    """Private key written with owner-only permissions."""
    path = tmp_path / "app.pem"
    path.write_text(private_key_pem)
    path.chmod(0o600)
    return path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_keyring() -> MemoryBackend:
    return MemoryBackend(name="keyring")


@pytest.fixture
def memory_file() -> MemoryBackend:
    return MemoryBackend(name="file")


@pytest.fixture
def secret_store(memory_keyring: MemoryBackend, memory_file: MemoryBackend) -> SecretStore:
    """Secret Store over in-memory backends."""
    return SecretStore(keyring=memory_keyring, file=memory_file, timeout=1.0)


@pytest.fixture
def failing_backend() -> Callable[[Exception], MemoryBackend]:
    """Factory for a backend whose every call raises the given error."""

    def make(error: Exception = CredentialError("backend exploded")) -> MemoryBackend:
        backend = MemoryBackend(name="keyring")
        backend.error = error
        return backend

    return make


@pytest.fixture
def fake_api(clock: FakeClock) -> FakeGitHubAPI:
    return FakeGitHubAPI(clock)


@pytest.fixture
def app_client(fake_api: FakeGitHubAPI) -> GitHubAppClient:
    """Host client routed to the fake API."""
    return GitHubAppClient(transport=httpx.MockTransport(fake_api.handler))


@pytest.fixture
def token_cache(clock: FakeClock) -> TokenCache:
    return TokenCache(clock=clock)


@pytest.fixture
def app_identity() -> AppIdentity:
    """App with a configured installation, key in the keyring."""
    return AppIdentity(
        name="ci-bot",
        app_id=123456,
        installation_id=987654,
        private_key_source=KeySource.KEYRING,
        patterns=["github.com/my-org/*"],
    )


@pytest.fixture
def discovery_app() -> AppIdentity:
    """App whose installation is discovered per repository."""
    return AppIdentity(
        name="discover-bot",
        app_id=222,
        patterns=["github.com/*"],
    )


@pytest.fixture
def token_identity() -> TokenIdentity:
    return TokenIdentity(name="legacy-pat", patterns=["github.example.com/team/*"])


@pytest.fixture
def settings(app_identity: AppIdentity, token_identity: TokenIdentity) -> AuthSettings:
    return AuthSettings(apps=[app_identity], tokens=[token_identity])


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """A YAML configuration with one App and one token identity."""
    path = tmp_path / "config.yml"
    path.write_text(
        """\
version: "1"
apps:
  - name: ci-bot
    app_id: 123456
    installation_id: 987654
    private_key_source: keyring
    patterns:
      - github.com/my-org/*
    priority: 10
tokens:
  - name: legacy-pat
    patterns:
      - github.example.com/team/*
"""
    )
    return path



@pytest.fixture
def cli_runner():
    """Create CLI runner for testing Click commands."""
    return CliRunner()


@pytest.fixture
def patched_engine(secret_store, app_client, clock):
    """Build CLI engines over the in-memory Secret Store and the fake API."""

    def build(settings: AuthSettings) -> CredentialEngine:
        return CredentialEngine(settings.identities, secret_store=secret_store, client=app_client, clock=clock)

    with (
        patch("git_app_auth.cli.git_credential.build_engine", side_effect=build) as git_credential,
        patch("git_app_auth.cli.check.build_engine", side_effect=build),
        patch("git_app_auth.cli.setup.build_engine", side_effect=build),
    ):
        yield git_credential


@pytest.fixture
def patched_store(secret_store):
    """Hand the in-memory Secret Store to CLI commands."""
    with (
        patch("git_app_auth.cli.secrets.build_secret_store", return_value=secret_store),
        patch("git_app_auth.cli.list.build_secret_store", return_value=secret_store),
        patch("git_app_auth.cli.setup.build_secret_store", return_value=secret_store),
    ):
        yield secret_store
