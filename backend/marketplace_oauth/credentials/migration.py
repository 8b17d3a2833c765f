"""
Legacy refresh token encoding migration.

Older rows stored the refresh token as a JSON object of hex strings:

    {"iv": "<24 hex>", "data": "<hex>", "tag": "<32 hex>"}

with an empty ``encryption_iv`` column. The current encoding is
base64(ciphertext || tag) in ``refresh_token_encrypted`` and base64(iv) in
``encryption_iv``.

``LegacyMigrator.migrate`` is pure: it never touches the database and
returns either a ``MigratedRecord`` (caller persists it) or a
``MigrationSkipped`` describing why nothing changed. A candidate is only
produced after a trial decryption succeeds, so a corrupt legacy value is
never replaced.
"""

import base64
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from marketplace_oauth.credentials.cipher import IV_SIZE, TAG_SIZE, CryptoError, TokenCipher

logger = logging.getLogger(__name__)

LEGACY_FIELDS = ("iv", "data", "tag")


class SkipReason(str, Enum):
    """Why a record was left untouched."""
    ALREADY_CURRENT = "already_current"
    EMPTY = "empty"
    NOT_LEGACY = "not_legacy"
    DECRYPT_FAILED = "decrypt_failed"


@dataclass(frozen=True)
class MigratedRecord:
    """Refresh token re-encoded in the current layout."""
    refresh_token_encrypted: str
    encryption_iv: str


@dataclass(frozen=True)
class MigrationSkipped:
    reason: SkipReason


MigrationResult = Union[MigratedRecord, MigrationSkipped]


@dataclass(frozen=True)
class _LegacyParts:
    iv: bytes
    data: bytes
    tag: bytes


def _parse_legacy(value: str) -> Optional[_LegacyParts]:
    """
    Structural check for the legacy encoding.

    Requires a JSON object whose iv/data/tag members are non-empty hex
    strings of the right lengths. Anything else is not legacy.
    """
    try:
        parsed = json.loads(value)
    except (ValueError, TypeError):
        return None
    if not isinstance(parsed, dict):
        return None

    decoded = {}
    for field_name in LEGACY_FIELDS:
        raw = parsed.get(field_name)
        if not isinstance(raw, str) or not raw:
            return None
        try:
            decoded[field_name] = bytes.fromhex(raw)
        except ValueError:
            return None

    if len(decoded["iv"]) != IV_SIZE or len(decoded["tag"]) != TAG_SIZE:
        return None
    return _LegacyParts(iv=decoded["iv"], data=decoded["data"], tag=decoded["tag"])


def is_legacy_encoding(refresh_token_encrypted: Optional[str], encryption_iv: Optional[str]) -> bool:
    """True when the stored value is in the legacy JSON layout."""
    if encryption_iv or not refresh_token_encrypted:
        return False
    return _parse_legacy(refresh_token_encrypted) is not None


class LegacyMigrator:
    """Converts legacy refresh token values to the current encoding."""

    def __init__(self, cipher: TokenCipher):
        self.cipher = cipher

    def migrate(
        self,
        refresh_token_encrypted: Optional[str],
        encryption_iv: Optional[str],
    ) -> MigrationResult:
        """
        Re-encode a legacy refresh token.

        Idempotent: a record already in the current layout is skipped with
        ALREADY_CURRENT.
        """
        if encryption_iv:
            return MigrationSkipped(SkipReason.ALREADY_CURRENT)
        if not refresh_token_encrypted:
            return MigrationSkipped(SkipReason.EMPTY)

        parts = _parse_legacy(refresh_token_encrypted)
        if parts is None:
            return MigrationSkipped(SkipReason.NOT_LEGACY)

        ciphertext = parts.data + parts.tag
        try:
            self.cipher.decrypt(ciphertext, parts.iv)
        except CryptoError:
            logger.warning(
                "Legacy refresh token failed trial decryption; leaving record untouched",
                extra={"operation": "legacy_migration"},
            )
            return MigrationSkipped(SkipReason.DECRYPT_FAILED)

        return MigratedRecord(
            refresh_token_encrypted=base64.b64encode(ciphertext).decode("ascii"),
            encryption_iv=base64.b64encode(parts.iv).decode("ascii"),
        )
