# src/securechat/services/keystore.py
"""Client-side store of secret key material for one authenticated identity.

The store is an explicit capability object: code that needs to decrypt is
handed a ``KeyStore`` rather than reaching for process-wide state. Moving keys
between devices goes through :meth:`KeyStore.export_state` and
:meth:`KeyStore.from_export`, which seal the state under a passphrase.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from typing import Any

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from securechat.services.crypto import CryptoService, KeyPair, PreKeyPair
from securechat.services.envelope import EncryptedEnvelope, aes_decrypt, aes_encrypt, decrypt
from securechat.services.errors import DecryptError, MissingKeyMaterial
from securechat.services.group_keys import GroupKey
from securechat.utils.encoding import b64decode, b64encode

logger = logging.getLogger(__name__)

EXPORT_FORMAT_VERSION = 1


class KeyStore:
    """Holds the identity key pair, prekey secrets and unwrapped group keys."""

    # PBKDF2 parameters for sealed exports (OWASP 2023 guidance for SHA-256)
    PBKDF2_ITERATIONS = 600_000
    SALT_LENGTH = 16

    def __init__(
        self,
        user_id: str | None = None,
        identity: KeyPair | None = None,
        prekeys: Mapping[int, bytes] | None = None,
    ) -> None:
        self.user_id = user_id
        self._identity = identity
        self._prekeys: dict[int, bytes] = dict(prekeys or {})
        self._group_keys: dict[int, GroupKey] = {}

    @classmethod
    def create(cls, user_id: str | None = None) -> KeyStore:
        """Return a store holding a freshly generated identity key pair."""
        return cls(user_id=user_id, identity=CryptoService.generate_identity_key_pair())

    # --- Identity ------------------------------------------------------------------
    @property
    def has_identity(self) -> bool:
        return self._identity is not None

    @property
    def identity_public_key(self) -> bytes:
        if self._identity is None:
            raise MissingKeyMaterial("No identity key pair on this device")
        return self._identity.public_key

    @property
    def identity_secret_key(self) -> bytes:
        if self._identity is None:
            raise MissingKeyMaterial("No identity key pair on this device")
        return self._identity.secret_key

    def decrypt(self, envelope: EncryptedEnvelope) -> bytes:
        """Open an envelope addressed to this identity."""
        secret = self._identity.secret_key if self._identity is not None else None
        return decrypt(envelope, secret)

    # --- One-time prekeys ----------------------------------------------------------
    def generate_prekeys(self, count: int) -> list[PreKeyPair]:
        """Generate prekeys, keep their secrets and return them for publication."""
        prekeys = CryptoService.generate_prekeys(count, existing_ids=self._prekeys)
        for prekey in prekeys:
            self._prekeys[prekey.key_id] = prekey.secret_key
        return prekeys

    @property
    def prekey_ids(self) -> list[int]:
        return sorted(self._prekeys)

    def prekey_secret(self, key_id: int) -> bytes:
        try:
            return self._prekeys[key_id]
        except KeyError as err:
            raise MissingKeyMaterial(f"No secret held for prekey {key_id}") from err

    def discard_prekey(self, key_id: int) -> None:
        """Forget a prekey secret once it has served its single use."""
        self._prekeys.pop(key_id, None)

    # --- Group keys ----------------------------------------------------------------
    def remember_group_key(self, group_id: int, group_key: GroupKey) -> None:
        """Cache an unwrapped group key, never replacing a newer version."""
        current = self._group_keys.get(group_id)
        if current is not None and current.version > group_key.version:
            logger.debug(
                "Ignoring group key v%d for group %s; holding v%d",
                group_key.version,
                group_id,
                current.version,
            )
            return
        self._group_keys[group_id] = group_key

    def group_key(self, group_id: int) -> GroupKey:
        try:
            return self._group_keys[group_id]
        except KeyError as err:
            raise MissingKeyMaterial(f"No group key held for group {group_id}") from err

    def forget_group(self, group_id: int) -> None:
        self._group_keys.pop(group_id, None)

    # --- Export / import -----------------------------------------------------------
    def _state(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "identity": (
                {
                    "publicKey": b64encode(self._identity.public_key),
                    "secretKey": b64encode(self._identity.secret_key),
                }
                if self._identity is not None
                else None
            ),
            "preKeys": {str(key_id): b64encode(secret) for key_id, secret in self._prekeys.items()},
            "groupKeys": {
                str(group_id): {"version": key.version, "key": b64encode(key.key)}
                for group_id, key in self._group_keys.items()
            },
        }

    @classmethod
    def _derive_export_key(cls, passphrase: str, salt: bytes, iterations: int) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=iterations,
        )
        return kdf.derive(passphrase.encode("utf-8"))

    def export_state(self, passphrase: str) -> dict[str, Any]:
        """Seal every secret held by this store under ``passphrase``.

        Returns:
            JSON-serialisable dict suitable for device sync or backup
        """
        if not passphrase:
            raise ValueError("An export passphrase is required")
        salt = os.urandom(self.SALT_LENGTH)
        key = self._derive_export_key(passphrase, salt, self.PBKDF2_ITERATIONS)
        nonce, ciphertext = aes_encrypt(key, json.dumps(self._state()).encode("utf-8"))
        return {
            "format": EXPORT_FORMAT_VERSION,
            "kdf": "pbkdf2-sha256",
            "iterations": self.PBKDF2_ITERATIONS,
            "salt": b64encode(salt),
            "nonce": b64encode(nonce),
            "ciphertext": b64encode(ciphertext),
        }

    @classmethod
    def from_export(cls, sealed: Mapping[str, Any], passphrase: str) -> KeyStore:
        """Rebuild a store from :meth:`export_state` output.

        Raises:
            DecryptError: If the passphrase is wrong or the export is malformed.
        """
        try:
            if sealed["format"] != EXPORT_FORMAT_VERSION:
                raise DecryptError(f"Unsupported export format {sealed['format']!r}")
            key = cls._derive_export_key(passphrase, b64decode(sealed["salt"]), int(sealed["iterations"]))
            plaintext = aes_decrypt(key, b64decode(sealed["nonce"]), b64decode(sealed["ciphertext"]))
            state = json.loads(plaintext)
            identity = state.get("identity")
            store = cls(
                user_id=state.get("userId"),
                identity=(
                    KeyPair(
                        public_key=b64decode(identity["publicKey"]),
                        secret_key=b64decode(identity["secretKey"]),
                    )
                    if identity
                    else None
                ),
                prekeys={int(key_id): b64decode(secret) for key_id, secret in state["preKeys"].items()},
            )
            for group_id, entry in state.get("groupKeys", {}).items():
                store.remember_group_key(
                    int(group_id), GroupKey(version=int(entry["version"]), key=b64decode(entry["key"]))
                )
        except (KeyError, TypeError, ValueError) as err:
            raise DecryptError(f"Malformed key export: {err}") from err
        return store
