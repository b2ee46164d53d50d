"""Security utilities for provider token encryption and signed round-trips.

WHAT:
    - Symmetric (Fernet) encryption for provider access/refresh tokens.
    - OAuth `state` tokens: HMAC over (tenant, platform, issued_at).
    - Webhook signature computation/verification (HMAC-SHA256).

WHY:
    - Token encryption keeps provider credentials out of plaintext storage.
    - The state token defends the OAuth redirect round-trip against CSRF.
    - Webhook events mutate stored campaigns, so they must be authenticated.

REFERENCES:
    - adsync/services/credential_store.py (encrypt_secret / decrypt_secret)
    - adsync/services/oauth_service.py (state tokens)
    - adsync/services/webhook_service.py (signatures)
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from adsync.errors import InvalidSignature, InvalidState

logger = logging.getLogger(__name__)


class TokenCipher:
    """Fernet wrapper bound to one configured key."""

    def __init__(self, key: str):
        if not key:
            raise RuntimeError(
                "TOKEN_ENCRYPTION_KEY is not set. Generate a 32-byte Fernet key and export it "
                "or add it to backend/.env."
            )
        try:
            # Validate key length by decoding without storing plaintext material.
            base64.urlsafe_b64decode(key.encode("utf-8"))
            self._cipher = Fernet(key)
        except (ValueError, TypeError) as exc:
            raise RuntimeError(
                "TOKEN_ENCRYPTION_KEY must be a URL-safe base64-encoded 32-byte string. "
                "Generate with: python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
            ) from exc

    def encrypt_secret(self, plaintext: str, *, context: str) -> str:
        """Encrypt provider secrets before persisting.

        Args:
            plaintext: Raw secret to encrypt (e.g., Google refresh token).
            context:   Friendly label for logs (platform/account).

        Returns:
            URL-safe base64 ciphertext suitable for DB storage.
        """
        if not plaintext:
            raise ValueError("Cannot encrypt empty secret.")

        ciphertext = self._cipher.encrypt(plaintext.encode("utf-8")).decode("utf-8")
        logger.info("[TOKEN_ENCRYPT] Secret encrypted for %s (length=%d)", context, len(plaintext))
        return ciphertext

    def decrypt_secret(self, ciphertext: str, *, context: str) -> str:
        """Reverse `encrypt_secret`.

        Raises:
            ValueError: If the stored value cannot be decrypted.
        """
        if not ciphertext:
            raise ValueError("Cannot decrypt empty secret.")

        try:
            plaintext = self._cipher.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
            logger.debug("[TOKEN_DECRYPT] Secret decrypted for %s (length=%d)", context, len(plaintext))
            return plaintext
        except InvalidToken as exc:
            logger.error("[TOKEN_DECRYPT] Invalid ciphertext for %s", context)
            raise ValueError("Unable to decrypt stored token.") from exc


# =============================================================================
# OAUTH STATE TOKENS
# =============================================================================

def _state_digest(secret: str, tenant_id: str, platform: str, issued_at: int) -> str:
    message = f"{tenant_id}:{platform}:{issued_at}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def generate_state_token(secret: str, tenant_id: str, platform: str, issued_at: Optional[int] = None) -> str:
    """Build the `state` value sent through the OAuth redirect.

    Format: "<issued_at>.<hex digest>". The timestamp travels in clear so the
    callback can recompute the digest from (tenant_id, platform) alone.
    """
    if not secret:
        raise RuntimeError("OAUTH_STATE_SECRET is not configured.")
    if issued_at is None:
        issued_at = int(time.time())
    return f"{issued_at}.{_state_digest(secret, tenant_id, platform, issued_at)}"


def verify_state_token(
    secret: str,
    state: Optional[str],
    tenant_id: str,
    platform: str,
    *,
    max_age_seconds: int,
    now: Optional[int] = None,
) -> None:
    """Raise InvalidState unless `state` is exactly what we would have issued."""
    if not secret:
        raise RuntimeError("OAUTH_STATE_SECRET is not configured.")
    if not state or "." not in state:
        raise InvalidState("Invalid state parameter. Possible CSRF attack.", platform)

    issued_raw, _, received_digest = state.partition(".")
    try:
        issued_at = int(issued_raw)
    except ValueError:
        raise InvalidState("Invalid state parameter. Possible CSRF attack.", platform)

    expected = _state_digest(secret, tenant_id, platform, issued_at)
    if not hmac.compare_digest(expected, received_digest):
        logger.warning("[OAUTH] State mismatch for tenant=%s platform=%s", tenant_id, platform)
        raise InvalidState("Invalid state parameter. Possible CSRF attack.", platform)

    if now is None:
        now = int(time.time())
    if now - issued_at > max_age_seconds or issued_at - now > 60:
        logger.warning("[OAUTH] Stale state token for tenant=%s platform=%s", tenant_id, platform)
        raise InvalidState("State parameter expired. Restart the authorization flow.", platform)


# =============================================================================
# WEBHOOK SIGNATURES
# =============================================================================

def canonical_webhook_body(tenant_id: str, account_id: str, event_type: str, data: Dict[str, Any]) -> bytes:
    """Serialize the signed portion of a webhook payload deterministically."""
    body = {
        "tenant_id": tenant_id,
        "account_id": account_id,
        "event_type": event_type,
        "data": data,
    }
    return json.dumps(body, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")


def compute_webhook_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_webhook_signature(secret: str, body: bytes, signature: Optional[str], *, platform: str) -> None:
    """Raise InvalidSignature unless `signature` is the HMAC of `body`.

    Accepts an optional "sha256=" prefix (GitHub/Meta style headers).
    """
    if not secret:
        logger.error("[WEBHOOK] Signing secret for %s not configured", platform)
        raise InvalidSignature("Webhook signing secret not configured", platform)

    if not signature:
        logger.warning("[WEBHOOK] Missing signature for %s", platform)
        raise InvalidSignature("Invalid webhook signature", platform)

    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]

    expected = compute_webhook_signature(secret, body)
    if not hmac.compare_digest(expected, signature.lower()):
        logger.warning("[WEBHOOK] Invalid HMAC signature for %s", platform)
        raise InvalidSignature("Invalid webhook signature", platform)
