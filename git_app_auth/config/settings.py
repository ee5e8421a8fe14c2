"""
Identity configuration using Pydantic for type-safe settings management.

The configuration file lists the identities the credential helper can act
as. It is validated completely at load time, so a malformed identity is a
ConfigurationError before any URL is resolved.

Example config.yml:

    version: "1"
    apps:
      - name: ci-bot
        app_id: 123456
        installation_id: 987654      # 0 or omitted: discovered per repository
        private_key_source: keyring
        patterns:
          - github.com/my-org/*
        priority: 10
    tokens:
      - name: legacy-pat
        username: x-access-token
        patterns:
          - github.example.com/team/*
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from git_app_auth.config.paths import default_config_path
from git_app_auth.enums import IdentityKind, KeySource
from git_app_auth.exceptions import ConfigurationError, InvalidGitUrlError
from git_app_auth.routing.router import normalize_pattern

CURRENT_VERSION = "1"

DEFAULT_TOKEN_USERNAME = "x-access-token"


def _validate_patterns(patterns: list[str]) -> list[str]:
    if not patterns:
        raise ValueError("at least one pattern is required")

    cleaned = []
    for i, pattern in enumerate(patterns):
        pattern = pattern.strip()
        if not pattern:
            raise ValueError(f"patterns[{i}] cannot be empty")
        wildcard_ok = pattern == "*" or (pattern.endswith("/*") and "*" not in pattern[:-1])
        if "*" in pattern and not wildcard_ok:
            raise ValueError(f"patterns[{i}]: wildcard is only allowed as the final path segment: {pattern!r}")
        try:
            normalize_pattern(pattern)
        except InvalidGitUrlError as e:
            raise ValueError(f"patterns[{i}]: {e.reason}: {pattern!r}") from e
        cleaned.append(pattern)
    return cleaned


class AppIdentity(BaseModel):
    """An installable App that signs assertions with its private key."""

    name: str = Field(..., min_length=1, description="Unique identity name")
    app_id: int = Field(..., gt=0, description="Numeric App id")
    installation_id: int = Field(default=0, ge=0, description="Installation id, 0 to discover per repository")
    private_key_source: KeySource = Field(default=KeySource.KEYRING, description="Where the private key is stored")
    private_key_path: Path | None = Field(default=None, description="PEM file for filesystem-sourced keys")
    patterns: list[str] = Field(..., description="URL prefix patterns, e.g. github.com/org/*")
    priority: int = Field(default=0, description="Tie-breaker between equally long matches, higher wins")

    @field_validator("patterns")
    @classmethod
    def validate_patterns(cls, v: list[str]) -> list[str]:
        return _validate_patterns(v)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Reject whitespace-only names."""
        if not v.strip():
            raise ValueError("name is required")
        return v.strip()

    @field_validator("private_key_path")
    @classmethod
    def expand_key_path(cls, v: Path | None) -> Path | None:
        """Expand ~ and make the path absolute."""
        if v is None:
            return None
        return v.expanduser().absolute()

    @model_validator(mode="after")
    def validate_key_source(self) -> AppIdentity:
        """A filesystem key source needs a path."""
        if self.private_key_source == KeySource.FILESYSTEM and self.private_key_path is None:
            raise ValueError("private_key_path is required when private_key_source is 'filesystem'")
        return self

    @property
    def kind(self) -> IdentityKind:
        return IdentityKind.APP

    @property
    def installation_known(self) -> bool:
        return self.installation_id > 0

    @property
    def bot_username(self) -> str:
        """Username presented alongside installation tokens."""
        return f"{self.name}[bot]"


class TokenIdentity(BaseModel):
    """A stored personal/service access token."""

    name: str = Field(..., min_length=1, description="Unique identity name, also the token reference")
    token_source: KeySource = Field(default=KeySource.KEYRING, description="Where the token was stored")
    username: str | None = Field(default=None, description="Basic-auth username override")
    patterns: list[str] = Field(..., description="URL prefix patterns, e.g. github.com/org/*")
    priority: int = Field(default=0, description="Tie-breaker between equally long matches, higher wins")

    @field_validator("patterns")
    @classmethod
    def validate_patterns(cls, v: list[str]) -> list[str]:
        return _validate_patterns(v)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Reject whitespace-only names."""
        if not v.strip():
            raise ValueError("name is required")
        return v.strip()

    @property
    def kind(self) -> IdentityKind:
        return IdentityKind.TOKEN

    @property
    def presented_username(self) -> str:
        return self.username or DEFAULT_TOKEN_USERNAME


Identity = AppIdentity | TokenIdentity


class AuthSettings(BaseSettings):
    """All configured identities.

    Loaded from YAML or JSON with environment variable interpolation.
    """

    model_config = SettingsConfigDict(
        env_prefix="GIT_APP_AUTH_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    version: str = Field(default=CURRENT_VERSION, description="Configuration schema version")
    apps: list[AppIdentity] = Field(default_factory=list)
    tokens: list[TokenIdentity] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_identities(self) -> AuthSettings:
        """Require at least one identity and unique names."""
        if not self.apps and not self.tokens:
            raise ValueError("at least one app or token identity is required")

        seen: set[str] = set()
        for identity in self.identities:
            if identity.name in seen:
                raise ValueError(f"duplicate identity name: {identity.name!r}")
            seen.add(identity.name)
        return self

    @property
    def identities(self) -> list[Identity]:
        return [*self.apps, *self.tokens]

    def get(self, name: str) -> Identity | None:
        """Find an identity by name."""
        for identity in self.identities:
            if identity.name == name:
                return identity
        return None

    def add_or_update_app(self, app: AppIdentity) -> None:
        """Add an App, merging patterns into an existing entry for the same installation."""
        for i, existing in enumerate(self.apps):
            if existing.app_id == app.app_id and existing.installation_id == app.installation_id:
                merged = list(dict.fromkeys([*existing.patterns, *app.patterns]))
                self.apps[i] = app.model_copy(update={"patterns": merged})
                return
        self.apps.append(app)

    def add_or_update_token(self, token: TokenIdentity) -> None:
        """Add a token identity or replace the one with the same name."""
        for i, existing in enumerate(self.tokens):
            if existing.name == token.name:
                self.tokens[i] = token
                return
        self.tokens.append(token)

    def remove(self, name: str) -> bool:
        """Remove an identity by name.

        Returns:
            True if an identity was removed
        """
        before = len(self.apps) + len(self.tokens)
        self.apps = [a for a in self.apps if a.name != name]
        self.tokens = [t for t in self.tokens if t.name != name]
        return len(self.apps) + len(self.tokens) < before

    def save(self, config_path: str | Path | None = None) -> Path:
        """Write the configuration as YAML with owner-only permissions.

        Returns:
            The path written
        """
        path = Path(config_path) if config_path else default_config_path()
        path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)

        data = self.model_dump(mode="json", exclude_none=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, sort_keys=False)
        return path

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> AuthSettings:
        """Load settings from the given path or the default location.

        Raises:
            ConfigurationError: If the file is missing or invalid
        """
        return cls.from_file(config_path or default_config_path())

    @classmethod
    def from_file(cls, config_path: str | Path) -> AuthSettings:
        """Load settings from a YAML or JSON file with environment variable interpolation.

        Files ending in .json are parsed as JSON, .yaml/.yml as YAML; anything
        else is tried as YAML then JSON. Supports ${VAR_NAME} and
        ${VAR_NAME:-default} substitution.

        Args:
            config_path: Path to configuration file

        Returns:
            AuthSettings instance

        Raises:
            ConfigurationError: If config file is invalid or missing required fields
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file, encoding="utf-8") as f:
                content = f.read()
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file: {config_path}") from e

        try:
            content = cls._interpolate_env_vars(content)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

        config_dict = cls._parse(content, config_file.suffix.lower(), str(config_path))
        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a mapping, not a list or scalar")

        try:
            return cls(**config_dict)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e

    @staticmethod
    def _parse(content: str, suffix: str, source: str) -> object:
        fmt: Literal["yaml", "json", "any"] = {".json": "json", ".yaml": "yaml", ".yml": "yaml"}.get(  # type: ignore[assignment]
            suffix, "any"
        )

        if fmt in ("yaml", "any"):
            try:
                return yaml.safe_load(content)
            except yaml.YAMLError as e:
                if fmt == "yaml":
                    raise ConfigurationError(f"Invalid YAML syntax in {source}: {e}") from e
                yaml_error = e

        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            if fmt == "json":
                raise ConfigurationError(f"Invalid JSON syntax in {source}: {e}") from e
            raise ConfigurationError(
                f"Failed to parse {source} as YAML or JSON (YAML error: {yaml_error}, JSON error: {e})"
            ) from e

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Interpolate ${VAR_NAME} placeholders with environment variables.

        Supports two syntaxes:
        - ${VAR_NAME} - Required environment variable (raises if not set)
        - ${VAR_NAME:-default} - Optional with default value

        YAML comment lines (starting with #) are left unchanged.

        Raises:
            ValueError: If a required environment variable is not set
        """
        pattern = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)
            value = os.getenv(var_name)

            if value is not None:
                return value
            elif default_value is not None:
                return default_value
            else:
                raise ValueError(f"Environment variable {var_name} is not set")

        def process_line(line: str) -> str:
            stripped = line.lstrip()
            if stripped.startswith("#"):
                return line
            return pattern.sub(replace_var, line)

        lines = content.split("\n")
        return "\n".join(process_line(line) for line in lines)
