"""Error taxonomy for the encryption protocol.

Every cryptographic failure is converted to one of these at the operation
boundary; low-level exceptions (bad base64, wrong key length, tag mismatch)
never escape un-translated.
"""

from __future__ import annotations


class CryptoError(RuntimeError):
    """Base class for all protocol-level failures."""


class UnsupportedEnvironment(CryptoError):
    """Raised when the required primitives (P-256 ECDH, AES-GCM) are unavailable.

    Fatal for key generation and registration; the message carries guidance
    suitable for showing to the user.
    """


class DecryptError(CryptoError):
    """Raised on AEAD authentication failure or a malformed envelope.

    Recoverable per message: callers render a "cannot decrypt" marker.
    """


class MissingKeyMaterial(CryptoError):
    """Raised when the local secret key needed for an operation is absent.

    Distinct from :class:`DecryptError` so clients can route the user to
    device sync or key recovery instead of reporting corruption.
    """


class GroupKeyNotReady(CryptoError):
    """Raised when a member's wrapped group key is still pending."""

    def __init__(self, group_id: int | str | None = None, user_id: str | None = None) -> None:
        self.group_id = group_id
        self.user_id = user_id
        super().__init__("Group key not ready")


class GroupKeyOutdated(CryptoError):
    """Raised when a group message uses a key version other than the one held locally.

    Receivers should refresh their wrapped group key and retry.
    """

    def __init__(self, held_version: int, message_version: int) -> None:
        self.held_version = held_version
        self.message_version = message_version
        super().__init__(
            f"Group key version mismatch: holding v{held_version}, message uses v{message_version}"
        )


class PreKeyExhausted(CryptoError):
    """Raised when no unused one-time prekey remains and the caller refuses the fallback."""
