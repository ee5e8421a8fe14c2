"""Tests for git_app_auth/config/settings.py Pydantic models.

Tests cover:
- Pattern validation shared by both identity kinds
- AppIdentity and TokenIdentity validation and derived properties
- AuthSettings identity-level validation
- Loading from YAML and JSON, with environment variable interpolation
- Saving and editing identities
"""

import json
import os
import stat
from pathlib import Path

import pytest
from pydantic import ValidationError

from git_app_auth.config import AppIdentity, AuthSettings, TokenIdentity
from git_app_auth.enums import IdentityKind, KeySource
from git_app_auth.exceptions import ConfigurationError


def app(**overrides) -> AppIdentity:
    fields = {"name": "ci-bot", "app_id": 123456, "patterns": ["github.com/my-org/*"]}
    fields.update(overrides)
    return AppIdentity(**fields)


class TestPatternValidation:
    @pytest.mark.parametrize(
        "patterns",
        [
            ["*"],
            ["github.com/*"],
            ["github.com/my-org/*", "github.com/other/repo"],
            ["https://github.com/my-org/*"],
            ["ghe.example.com:8443/team/*"],
        ],
    )
    def test_valid_patterns(self, patterns):
        assert app(patterns=patterns).patterns == patterns

    def test_patterns_are_stripped(self):
        assert app(patterns=["  github.com/my-org/*  "]).patterns == ["github.com/my-org/*"]

    def test_at_least_one_pattern(self):
        with pytest.raises(ValidationError, match="at least one pattern"):
            app(patterns=[])

    def test_blank_pattern(self):
        with pytest.raises(ValidationError, match=r"patterns\[1\] cannot be empty"):
            app(patterns=["github.com/*", "   "])

    @pytest.mark.parametrize("pattern", ["github.com/*/infra", "github.com/my-org*", "*.github.com/*", "**"])
    def test_wildcard_only_as_last_segment(self, pattern):
        with pytest.raises(ValidationError, match="wildcard"):
            app(patterns=[pattern])

    def test_malformed_pattern(self):
        with pytest.raises(ValidationError, match="patterns"):
            app(patterns=["https:///my-org/*"])

    def test_token_identity_uses_same_rules(self):
        with pytest.raises(ValidationError, match="wildcard"):
            TokenIdentity(name="pat", patterns=["github.com/*/x"])


class TestAppIdentity:
    def test_defaults(self):
        identity = app()

        assert identity.installation_id == 0
        assert identity.installation_known is False
        assert identity.private_key_source == KeySource.KEYRING
        assert identity.priority == 0
        assert identity.kind == IdentityKind.APP

    def test_bot_username(self):
        assert app(name="deploy-app").bot_username == "deploy-app[bot]"

    @pytest.mark.parametrize("app_id", [0, -5])
    def test_app_id_must_be_positive(self, app_id):
        with pytest.raises(ValidationError):
            app(app_id=app_id)

    def test_installation_id_cannot_be_negative(self):
        with pytest.raises(ValidationError):
            app(installation_id=-1)

    def test_blank_name(self):
        with pytest.raises(ValidationError, match="name is required"):
            app(name="   ")

    def test_filesystem_source_requires_path(self):
        with pytest.raises(ValidationError, match="private_key_path is required"):
            app(private_key_source="filesystem")

    def test_key_path_is_expanded(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HOME", str(tmp_path))

        identity = app(private_key_source="filesystem", private_key_path="~/keys/app.pem")

        assert identity.private_key_path == tmp_path / "keys" / "app.pem"


class TestTokenIdentity:
    def test_default_username(self):
        identity = TokenIdentity(name="pat", patterns=["*"])

        assert identity.presented_username == "x-access-token"
        assert identity.kind == IdentityKind.TOKEN

    def test_username_override(self):
        assert TokenIdentity(name="pat", username="deploy", patterns=["*"]).presented_username == "deploy"


class TestAuthSettings:
    def test_requires_an_identity(self):
        with pytest.raises(ValidationError, match="at least one app or token identity"):
            AuthSettings()

    def test_names_unique_across_kinds(self):
        with pytest.raises(ValidationError, match="duplicate identity name"):
            AuthSettings(apps=[app(name="shared")], tokens=[TokenIdentity(name="shared", patterns=["*"])])

    def test_identities_and_get(self, settings):
        assert [i.name for i in settings.identities] == ["ci-bot", "legacy-pat"]
        assert settings.get("legacy-pat").kind == IdentityKind.TOKEN
        assert settings.get("nobody") is None

    def test_add_app_merges_patterns_for_same_installation(self):
        settings = AuthSettings(apps=[app(installation_id=5)])

        settings.add_or_update_app(app(installation_id=5, patterns=["github.com/my-org/*", "github.com/extra/*"]))

        assert len(settings.apps) == 1
        assert settings.apps[0].patterns == ["github.com/my-org/*", "github.com/extra/*"]

    def test_add_app_with_new_installation_appends(self):
        settings = AuthSettings(apps=[app(installation_id=5)])

        settings.add_or_update_app(app(name="ci-bot-2", installation_id=6))

        assert [a.name for a in settings.apps] == ["ci-bot", "ci-bot-2"]

    def test_add_token_replaces_same_name(self):
        settings = AuthSettings(tokens=[TokenIdentity(name="pat", patterns=["*"])])

        settings.add_or_update_token(TokenIdentity(name="pat", patterns=["github.com/*"], priority=3))

        assert len(settings.tokens) == 1
        assert settings.tokens[0].priority == 3

    def test_remove(self, settings):
        assert settings.remove("legacy-pat") is True
        assert settings.remove("legacy-pat") is False
        assert [i.name for i in settings.identities] == ["ci-bot"]


class TestLoading:
    def test_from_yaml(self, config_file):
        settings = AuthSettings.from_file(config_file)

        assert settings.apps[0].app_id == 123456
        assert settings.apps[0].installation_id == 987654
        assert settings.apps[0].priority == 10
        assert settings.tokens[0].patterns == ["github.example.com/team/*"]

    def test_from_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"tokens": [{"name": "pat", "patterns": ["*"]}]}))

        assert AuthSettings.from_file(path).tokens[0].name == "pat"

    def test_unknown_suffix_tries_yaml_then_json(self, tmp_path):
        path = tmp_path / "config.conf"
        path.write_text('{"tokens": [{"name": "pat", "patterns": ["*"]}]}')

        assert AuthSettings.from_file(path).tokens[0].name == "pat"

    def test_load_uses_env_override(self, config_file, monkeypatch):
        monkeypatch.setenv("GIT_APP_AUTH_CONFIG", str(config_file))

        assert AuthSettings.load().get("ci-bot") is not None

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            AuthSettings.from_file(tmp_path / "missing.yml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("apps: [unclosed\n")

        with pytest.raises(ConfigurationError, match="Invalid YAML syntax"):
            AuthSettings.from_file(path)

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")

        with pytest.raises(ConfigurationError, match="Invalid JSON syntax"):
            AuthSettings.from_file(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigurationError, match="must be a mapping"):
            AuthSettings.from_file(path)

    def test_invalid_identity_is_configuration_error(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("apps:\n  - name: bad\n    app_id: 0\n    patterns: ['*']\n")

        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            AuthSettings.from_file(path)

    def test_env_interpolation(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CI_APP_ID", "4242")
        path = tmp_path / "config.yml"
        path.write_text(
            "apps:\n"
            "  - name: ci-bot\n"
            "    app_id: ${CI_APP_ID}\n"
            "    installation_id: ${CI_INSTALLATION_ID:-77}\n"
            "    patterns: ['github.com/*']\n"
        )

        identity = AuthSettings.from_file(path).apps[0]

        assert (identity.app_id, identity.installation_id) == (4242, 77)

    def test_missing_env_var(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CI_APP_ID", raising=False)
        path = tmp_path / "config.yml"
        path.write_text("apps:\n  - name: ci-bot\n    app_id: ${CI_APP_ID}\n    patterns: ['*']\n")

        with pytest.raises(ConfigurationError, match="CI_APP_ID is not set"):
            AuthSettings.from_file(path)

    def test_comments_are_not_interpolated(self, tmp_path, monkeypatch):
        monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)
        path = tmp_path / "config.yml"
        path.write_text("# app_id: ${NOT_SET_ANYWHERE}\ntokens:\n  - name: pat\n    patterns: ['*']\n")

        assert AuthSettings.from_file(path).tokens[0].name == "pat"


class TestSaving:
    def test_round_trip(self, settings, tmp_path):
        path = settings.save(tmp_path / "nested" / "config.yml")

        loaded = AuthSettings.from_file(path)

        assert loaded.model_dump() == settings.model_dump()

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
    def test_saved_file_is_owner_only(self, settings, tmp_path):
        path = settings.save(tmp_path / "config.yml")

        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_default_location(self, settings, tmp_path, monkeypatch):
        monkeypatch.delenv("GIT_APP_AUTH_CONFIG", raising=False)
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))

        path = settings.save()

        assert path == Path(tmp_path) / "git-app-auth" / "config.yml"
        assert path.exists()
