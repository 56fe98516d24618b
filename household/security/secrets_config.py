"""
Secrets configuration and validation.

Documents the secrets (environment variables) the service reads, audits which
are present for the current environment, and loads the identity provider's
service-account material. Never logs actual secret values.
"""

import base64
import binascii
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from household.config import Settings
from household.errors import InvalidInput

logger = logging.getLogger(__name__)


@dataclass
class SecretsAuditResult:
    """Result of a secrets audit."""

    configured: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def is_complete(self) -> bool:
        return len(self.missing) == 0

    def to_dict(self) -> dict:
        return {
            "configured": self.configured,
            "missing": self.missing,
            "warnings": self.warnings,
            "is_complete": self.is_complete(),
        }


# (env_var_name, description, required_outside_development)
REQUIRED_SECRETS = [
    ("ENCRYPTION_KEY", "Key for the credential vault", True),
    ("FIREBASE_SERVICE_ACCOUNT_FILE", "Path to the identity provider service-account JSON", False),
    ("FIREBASE_SERVICE_ACCOUNT_JSON", "Identity provider service-account JSON", False),
    ("FIREBASE_SERVICE_ACCOUNT_BASE64", "Identity provider service-account JSON, Base64", False),
    ("DATABASE_URL", "PostgreSQL connection string", False),
]

SERVICE_ACCOUNT_VARS = (
    "FIREBASE_SERVICE_ACCOUNT_FILE",
    "FIREBASE_SERVICE_ACCOUNT_JSON",
    "FIREBASE_SERVICE_ACCOUNT_BASE64",
    "FIREBASE_SERVICE_ACCOUNT",
)


def validate_secrets(settings: Settings, environ=None) -> SecretsAuditResult:
    """Check which secrets are present; production-like environments need identity credentials."""
    environ = os.environ if environ is None else environ
    result = SecretsAuditResult()

    for var_name, _description, required in REQUIRED_SECRETS:
        if environ.get(var_name):
            result.configured.append(var_name)
        elif required:
            result.missing.append(var_name)

    if not settings.is_development and not settings.has_identity_credentials:
        result.missing.append("FIREBASE_SERVICE_ACCOUNT_*")
    if settings.is_development and not settings.has_identity_credentials:
        result.warnings.append("No identity provider credentials; development shortcut applies")

    return result


def mask_secret(value: str, chars_visible: int = 4) -> str:
    """
    Mask a secret value for safe logging.

    Returns a value like "abc1***", or "***" if the value is too short.
    """
    if not value or len(value) <= chars_visible:
        return "***"
    return value[:chars_visible] + "***"


def _parse_json(raw: str, source: str) -> dict:
    try:
        info = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidInput(f"{source} does not contain valid JSON") from e
    if not isinstance(info, dict):
        raise InvalidInput(f"{source} must contain a JSON object")
    return info


def load_service_account_info(settings: Settings) -> dict | None:
    """
    Load identity provider service-account credentials.

    Resolution order: file path, raw JSON, Base64 JSON, legacy raw JSON.
    Returns None when nothing is configured.
    """
    if settings.firebase_service_account_file:
        path = Path(settings.firebase_service_account_file).expanduser()
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise InvalidInput(f"Cannot read service account file {path}: {e}") from e
        logger.info(f"Using service account file {path}")
        return _parse_json(raw, "FIREBASE_SERVICE_ACCOUNT_FILE")

    if settings.firebase_service_account_json:
        logger.info("Using service account from FIREBASE_SERVICE_ACCOUNT_JSON")
        return _parse_json(settings.firebase_service_account_json, "FIREBASE_SERVICE_ACCOUNT_JSON")

    if settings.firebase_service_account_base64:
        try:
            decoded = base64.b64decode(settings.firebase_service_account_base64, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise InvalidInput("FIREBASE_SERVICE_ACCOUNT_BASE64 is not valid Base64") from e
        logger.info("Using service account from FIREBASE_SERVICE_ACCOUNT_BASE64")
        return _parse_json(decoded, "FIREBASE_SERVICE_ACCOUNT_BASE64")

    if settings.firebase_service_account_legacy:
        logger.warning("FIREBASE_SERVICE_ACCOUNT is deprecated; use FIREBASE_SERVICE_ACCOUNT_JSON")
        return _parse_json(settings.firebase_service_account_legacy, "FIREBASE_SERVICE_ACCOUNT")

    return None
