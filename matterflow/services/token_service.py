"""
Clio OAuth token storage and refresh

Tokens are stored encrypted in the clio_tokens table. Environment tokens
are used until the first refresh writes a row.
"""

import base64
import hashlib
import logging
from datetime import datetime, timedelta
from typing import Optional

import httpx
from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from ..config import (
    CLIO_ACCESS_TOKEN,
    CLIO_API_BASE_URL,
    CLIO_CLIENT_ID,
    CLIO_CLIENT_SECRET,
    CLIO_REFRESH_TOKEN,
    CLIO_TIMEOUT_SECONDS,
    SECRET_KEY,
)
from ..models import ClioToken

logger = logging.getLogger(__name__)

TOKEN_PATH = "/oauth/token"  # noqa: S105 - OAuth endpoint path


class TokenRefreshError(Exception):
    """Raised when Clio rejects a refresh or no refresh token is available"""

    pass


def _cipher() -> Fernet:
    key = base64.urlsafe_b64encode(hashlib.sha256(SECRET_KEY.encode("utf-8")).digest())
    return Fernet(key)


def encrypt_token(token: str) -> str:
    return _cipher().encrypt(token.encode("utf-8")).decode("utf-8")


def decrypt_token(token: str) -> Optional[str]:
    try:
        return _cipher().decrypt(token.encode("utf-8")).decode("utf-8")
    except InvalidToken:
        logger.error("❌ Stored Clio token could not be decrypted (SECRET_KEY changed?)")
        return None


class ClioTokenService:
    """Reads, stores and refreshes Clio OAuth tokens"""

    def __init__(self, db: Session, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.db = db
        self.transport = transport

    def _current(self) -> Optional[ClioToken]:
        return self.db.query(ClioToken).order_by(ClioToken.id.desc()).first()

    def get_access_token(self) -> Optional[str]:
        record = self._current()
        if record:
            token = decrypt_token(record.access_token)
            if token:
                return token
        return CLIO_ACCESS_TOKEN

    def get_refresh_token(self) -> Optional[str]:
        record = self._current()
        if record and record.refresh_token:
            token = decrypt_token(record.refresh_token)
            if token:
                return token
        return CLIO_REFRESH_TOKEN

    def expires_soon(self, within: timedelta = timedelta(hours=24)) -> bool:
        record = self._current()
        if not record or not record.expires_at:
            return True
        return record.expires_at <= datetime.utcnow() + within

    def save_tokens(self, access_token: str, refresh_token: Optional[str], expires_in: Optional[int]) -> ClioToken:
        record = self._current()
        if not record:
            record = ClioToken()
            self.db.add(record)

        record.access_token = encrypt_token(access_token)
        if refresh_token:
            record.refresh_token = encrypt_token(refresh_token)
        record.expires_at = datetime.utcnow() + timedelta(seconds=expires_in or 2592000)
        record.updated_at = datetime.utcnow()

        self.db.commit()
        self.db.refresh(record)
        return record

    async def refresh_access_token(self) -> str:
        """Exchange the refresh token for a new access token and store both"""
        refresh_token = self.get_refresh_token()
        if not refresh_token:
            raise TokenRefreshError("No Clio refresh token available")

        logger.info("🔄 Refreshing Clio access token...")
        async with httpx.AsyncClient(
            base_url=CLIO_API_BASE_URL, timeout=CLIO_TIMEOUT_SECONDS, transport=self.transport
        ) as client:
            response = await client.post(
                TOKEN_PATH,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "client_id": CLIO_CLIENT_ID,
                    "client_secret": CLIO_CLIENT_SECRET,
                },
            )

        if response.status_code != 200:
            logger.error(f"❌ Clio token refresh failed: {response.status_code} {response.text}")
            raise TokenRefreshError(f"Clio token refresh failed with status {response.status_code}")

        tokens = response.json()
        access_token = tokens.get("access_token")
        if not access_token:
            raise TokenRefreshError("No access token in refresh response")

        self.save_tokens(access_token, tokens.get("refresh_token"), tokens.get("expires_in"))
        logger.info("✅ Clio access token refreshed successfully")
        return access_token
