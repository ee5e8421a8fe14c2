"""Enumerations for identities, secrets and resolution stages."""

from enum import Enum


class IdentityKind(str, Enum):
    """Kinds of configured credential sources."""

    APP = "app"
    TOKEN = "token"

    def __str__(self) -> str:
        return self.value


class SecretKind(str, Enum):
    """Types of secrets held by the Secret Store."""

    PRIVATE_KEY = "private_key"
    ACCESS_TOKEN = "access_token"

    def __str__(self) -> str:
        return self.value


class KeySource(str, Enum):
    """Where the setup step placed an identity's private key or token."""

    KEYRING = "keyring"
    FILESYSTEM = "filesystem"

    def __str__(self) -> str:
        return self.value


class BackendName(str, Enum):
    """Secret storage backends, in lookup order."""

    KEYRING = "keyring"
    FILE = "file"

    def __str__(self) -> str:
        return self.value


class AuthStage(str, Enum):
    """Stages of a credential resolution, used to tag failures.

    - secret: reading the private key or stored token
    - signing: building the signed assertion
    - discovery: looking up the installation id for the target repository
    - exchange: trading the assertion for an installation access token
    """

    SECRET = "secret"
    SIGNING = "signing"
    DISCOVERY = "discovery"
    EXCHANGE = "exchange"

    def __str__(self) -> str:
        return self.value
