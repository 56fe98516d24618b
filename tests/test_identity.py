"""
Tests for the identity resolver and service-account loading.
"""

import base64
import json

import pytest

from household.config import Settings
from household.errors import InvalidInput, Unauthenticated
from household.security.identity import DEV_PRINCIPAL_ID, IdentityResolver, bearer_token, build_verifier
from household.security.roles import Role
from household.security.secrets_config import load_service_account_info, mask_secret, validate_secrets
from tests.fixtures import FakeVerifier


class TestBearerToken:
    def test_extracts_token(self):
        assert bearer_token("Bearer abc.def") == "abc.def"

    def test_scheme_is_case_insensitive(self):
        assert bearer_token("bearer xyz") == "xyz"

    def test_other_schemes_ignored(self):
        assert bearer_token("Basic dXNlcjpwYXNz") is None

    def test_missing_credential(self):
        assert bearer_token("Bearer ") is None
        assert bearer_token(None) is None


class TestIdentityResolver:
    """Token, legacy query parameters and the development shortcut."""

    @pytest.fixture
    def resolver(self, directory):
        verifier = FakeVerifier()
        verifier.add("tok-alice", "alice", name="Alice", email="alice@example.com")
        return IdentityResolver(directory, verifier)

    def test_valid_token_creates_principal(self, resolver, directory):
        ctx = resolver.resolve("Bearer tok-alice")
        assert ctx.principal_id == "alice"
        assert ctx.role == Role.USER
        assert directory.get("alice").email == "alice@example.com"

    def test_invalid_token_is_unauthenticated(self, resolver):
        with pytest.raises(Unauthenticated):
            resolver.resolve("Bearer forged")

    def test_missing_token_is_unauthenticated(self, resolver):
        with pytest.raises(Unauthenticated):
            resolver.resolve(None)

    def test_auth_query_parameter_accepted(self, resolver, caplog):
        ctx = resolver.resolve(None, {"auth": "tok-alice"})
        assert ctx.principal_id == "alice"
        assert "Deprecated" in caplog.text

    def test_header_wins_over_query(self, resolver):
        with pytest.raises(Unauthenticated):
            resolver.resolve("Bearer forged", {"auth": "tok-alice"})

    def test_legacy_user_id_for_known_principal(self, resolver, make_principal, caplog):
        make_principal("bob")
        ctx = resolver.resolve(None, {"userId": "bob"})
        assert ctx.principal_id == "bob"
        assert "Deprecated" in caplog.text

    def test_legacy_user_id_for_unknown_principal(self, resolver):
        with pytest.raises(Unauthenticated):
            resolver.resolve(None, {"userId": "nobody"})

    def test_legacy_user_id_can_be_disabled(self, directory, make_principal):
        make_principal("bob")
        resolver = IdentityResolver(directory, FakeVerifier(), allow_legacy_user_param=False)
        with pytest.raises(Unauthenticated):
            resolver.resolve(None, {"userId": "bob"})

    def test_existing_role_is_kept(self, resolver, make_principal):
        make_principal("alice", role="admin")
        assert resolver.resolve("Bearer tok-alice").role == Role.ADMIN

    def test_dev_shortcut_yields_admin(self, directory):
        resolver = IdentityResolver(directory, None, dev_shortcut=True)
        ctx = resolver.resolve(None)
        assert ctx.principal_id == DEV_PRINCIPAL_ID
        assert ctx.is_admin

    def test_no_verifier_without_shortcut_rejects(self, directory):
        resolver = IdentityResolver(directory, None, dev_shortcut=False)
        with pytest.raises(Unauthenticated):
            resolver.resolve("Bearer anything")

    def test_shortcut_ignored_when_verifier_present(self, directory):
        resolver = IdentityResolver(directory, FakeVerifier(), dev_shortcut=True)
        assert not resolver.dev_mode
        with pytest.raises(Unauthenticated):
            resolver.resolve(None)


class TestDevShortcutSettings:
    def test_only_in_development(self):
        assert Settings(env="development", dev_auth_bypass=True).dev_shortcut_enabled
        assert not Settings(env="production", dev_auth_bypass=True).dev_shortcut_enabled
        assert not Settings(env="development", dev_auth_bypass=False).dev_shortcut_enabled


class TestServiceAccountLoading:
    INFO = {"type": "service_account", "project_id": "household-test"}

    def test_nothing_configured(self):
        assert load_service_account_info(Settings()) is None
        assert build_verifier(Settings()) is None

    def test_file_wins(self, tmp_path):
        path = tmp_path / "sa.json"
        path.write_text(json.dumps(self.INFO))
        settings = Settings(firebase_service_account_file=str(path), firebase_service_account_json="{bad")
        assert load_service_account_info(settings) == self.INFO

    def test_raw_json(self):
        settings = Settings(firebase_service_account_json=json.dumps(self.INFO))
        assert load_service_account_info(settings)["project_id"] == "household-test"

    def test_base64_json(self):
        encoded = base64.b64encode(json.dumps(self.INFO).encode()).decode()
        settings = Settings(firebase_service_account_base64=encoded)
        assert load_service_account_info(settings) == self.INFO

    def test_legacy_variable(self):
        settings = Settings(firebase_service_account_legacy=json.dumps(self.INFO))
        assert load_service_account_info(settings) == self.INFO

    def test_invalid_json_rejected(self):
        with pytest.raises(InvalidInput):
            load_service_account_info(Settings(firebase_service_account_json="{not json"))

    def test_missing_file_rejected(self, tmp_path):
        with pytest.raises(InvalidInput):
            load_service_account_info(Settings(firebase_service_account_file=str(tmp_path / "missing.json")))


class TestSecretsAudit:
    def test_production_requires_identity_credentials(self):
        result = validate_secrets(Settings(env="production"), environ={"ENCRYPTION_KEY": "k"})
        assert "FIREBASE_SERVICE_ACCOUNT_*" in result.missing
        assert not result.is_complete()

    def test_development_warns_only(self):
        result = validate_secrets(Settings(env="development"), environ={"ENCRYPTION_KEY": "k"})
        assert result.is_complete()
        assert result.warnings

    def test_mask_secret(self):
        assert mask_secret("abcdefgh") == "abcd***"
        assert mask_secret("ab") == "***"
