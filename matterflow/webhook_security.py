"""
Webhook Security Module

Signature verification for Clio webhooks:
- Constant-time signature comparison
- Signature computed over the raw request body
- Activation handshake detection (X-Hook-Secret)
"""

import hashlib
import hmac
import logging
from typing import Optional

from fastapi import HTTPException, Request

from .config import CLIO_WEBHOOK_SECRET

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Clio-Signature"
HOOK_SECRET_HEADER = "X-Hook-Secret"


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def get_hook_secret(request: Request) -> Optional[str]:
    """Clio sends X-Hook-Secret once when a webhook is activated"""
    return request.headers.get(HOOK_SECRET_HEADER)


async def verify_clio_webhook(
    request: Request, secret: Optional[str] = None, raise_on_failure: bool = True
) -> tuple[bool, bytes]:
    """
    Verify a Clio webhook signature.

    Clio uses:
    - Header: 'X-Clio-Signature' (hex HMAC-SHA256 of the raw body)

    Args:
        request: FastAPI request object
        secret: Webhook secret, defaults to CLIO_WEBHOOK_SECRET
        raise_on_failure: If True, raises HTTPException on failure

    Returns:
        Tuple of (is_valid, raw_body)
    """
    raw_body = await request.body()
    secret = secret if secret is not None else CLIO_WEBHOOK_SECRET

    signature = request.headers.get(SIGNATURE_HEADER, "")
    if not signature:
        logger.warning("🚫 Clio webhook missing signature header")
        if raise_on_failure:
            raise HTTPException(status_code=401, detail="Missing webhook signature")
        return False, raw_body

    if not secret:
        logger.error("❌ CLIO_WEBHOOK_SECRET not configured, rejecting webhook")
        if raise_on_failure:
            raise HTTPException(status_code=500, detail="Webhook secret not configured")
        return False, raw_body

    expected_signature = compute_hmac_sha256(secret, raw_body)
    if not constant_time_compare(expected_signature, signature):
        logger.warning("🚫 Clio webhook signature mismatch")
        if raise_on_failure:
            raise HTTPException(status_code=401, detail="Invalid webhook signature")
        return False, raw_body

    logger.debug("✅ Clio webhook signature verified")
    return True, raw_body


def create_webhook_signature(secret: str, payload: bytes) -> str:
    """Create a Clio-style signature for testing"""
    return compute_hmac_sha256(secret, payload)
