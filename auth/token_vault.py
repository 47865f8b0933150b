# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Token Vault - encrypted-at-rest Planning Center credentials with transparent refresh
"""
import hashlib
import logging
import os
import string
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Callable, Dict, Optional

import requests
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

import config
from storage.supabase_store import eq
from utils.timezone import utc_now, parse_timestamp, to_iso

logger = logging.getLogger(__name__)

NONCE_BYTES = 12
TAG_BYTES = 16
HEX_DIGITS = set(string.hexdigits)


class VaultError(Exception):
    """Base error for encryption failures"""


class DecryptionError(VaultError):
    """Ciphertext is malformed, was tampered with, or the key does not match"""


class KeyNotConfiguredError(DecryptionError):
    """No encryption secret is configured"""


class CredentialError(Exception):
    """A connection's stored credentials cannot produce a usable access token"""

    def __init__(self, message: str, needs_reauthorization: bool = False):
        super().__init__(message)
        self.needs_reauthorization = needs_reauthorization


class RefreshError(CredentialError):
    """The token refresh call failed"""


@lru_cache(maxsize=8)
def derive_key(secret: str) -> bytes:
    """32-byte AES key: 64+ hex chars are used directly, anything else is SHA-256 hashed"""
    if not secret:
        raise KeyNotConfiguredError("PCO_TOKEN_ENCRYPTION_KEY is not configured")

    if len(secret) >= 64 and all(ch in HEX_DIGITS for ch in secret):
        return bytes.fromhex(secret[:64])
    return hashlib.sha256(secret.encode('utf-8')).digest()


class TokenVault:
    """Encrypts tokens for storage and hands out valid access tokens"""

    def __init__(self, secret: str, store, session: Optional[requests.Session] = None,
                 client_id: str = config.PCO_CLIENT_ID,
                 client_secret: str = config.PCO_CLIENT_SECRET,
                 token_url: str = config.PCO_TOKEN_URL,
                 refresh_margin: timedelta = timedelta(minutes=config.TOKEN_REFRESH_MARGIN_MINUTES),
                 now: Callable[[], datetime] = utc_now):
        self.secret = secret
        self.store = store
        self.session = session or requests.Session()
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.refresh_margin = refresh_margin
        self.now = now

    @property
    def _cipher(self) -> AESGCM:
        return AESGCM(derive_key(self.secret))

    def encrypt(self, plaintext: str) -> str:
        """Hex of nonce + ciphertext + tag; a fresh nonce every call"""
        nonce = os.urandom(NONCE_BYTES)
        sealed = self._cipher.encrypt(nonce, plaintext.encode('utf-8'), None)
        return (nonce + sealed).hex()

    def decrypt(self, ciphertext: str) -> str:
        cipher = self._cipher

        try:
            raw = bytes.fromhex(ciphertext or '')
        except ValueError as e:
            raise DecryptionError("Ciphertext is not valid hex") from e

        if len(raw) < NONCE_BYTES + TAG_BYTES:
            raise DecryptionError("Ciphertext is too short")

        try:
            plain = cipher.decrypt(raw[:NONCE_BYTES], raw[NONCE_BYTES:], None)
        except InvalidTag as e:
            raise DecryptionError("Ciphertext failed authentication") from e

        return plain.decode('utf-8')

    def store_tokens(self, connection_id: str, access_token: str, refresh_token: str,
                     expires_at: datetime) -> Dict:
        values = {
            'access_token_encrypted': self.encrypt(access_token),
            'refresh_token_encrypted': self.encrypt(refresh_token),
            'token_expires_at': to_iso(expires_at),
        }
        self.store.update('pco_connections', values, [eq('id', connection_id)])
        return values

    def _decrypt_stored(self, connection: Dict, column: str) -> str:
        try:
            return self.decrypt(connection[column])
        except KeyNotConfiguredError as e:
            raise CredentialError(str(e)) from e
        except DecryptionError as e:
            raise CredentialError(f"Stored {column} could not be decrypted",
                                  needs_reauthorization=True) from e

    def needs_refresh(self, connection: Dict) -> bool:
        expires_at = parse_timestamp(connection.get('token_expires_at'))
        if expires_at is None:
            return True
        return expires_at - self.now() < self.refresh_margin

    def get_valid_access_token(self, connection: Dict) -> str:
        """
        Return an access token good for at least the refresh margin.

        Refreshes once when the stored token is inside the margin, persists the
        new pair, and updates ``connection`` in place so later calls in the same
        run see the new expiry.
        """
        if not connection.get('access_token_encrypted') or not connection.get('refresh_token_encrypted'):
            raise CredentialError("Connection is missing stored tokens", needs_reauthorization=True)

        if not self.needs_refresh(connection):
            return self._decrypt_stored(connection, 'access_token_encrypted')

        logger.info(f"🔄 Access token for connection {connection.get('id')} expires soon, refreshing...")
        refresh_token = self._decrypt_stored(connection, 'refresh_token_encrypted')

        try:
            response = self.session.post(self.token_url, json={
                'grant_type': 'refresh_token',
                'refresh_token': refresh_token,
                'client_id': self.client_id,
                'client_secret': self.client_secret,
            }, timeout=config.REQUEST_TIMEOUT_SECONDS)
        except requests.RequestException as e:
            logger.error(f"❌ Token refresh transport error: {type(e).__name__}")
            raise RefreshError(f"Token refresh failed: {type(e).__name__}") from e

        if response.status_code >= 500:
            logger.error(f"❌ Token refresh failed upstream ({response.status_code})")
            raise RefreshError(f"Token refresh failed with status {response.status_code}")
        if response.status_code >= 400:
            logger.error(f"❌ Token refresh rejected ({response.status_code}); reauthorization required")
            raise RefreshError("Planning Center rejected the refresh token",
                               needs_reauthorization=True)

        try:
            tokens = response.json()
        except ValueError as e:
            raise RefreshError("Token refresh returned invalid JSON") from e

        access_token = tokens.get('access_token')
        if not access_token:
            raise RefreshError("Token refresh response had no access token")

        new_refresh = tokens.get('refresh_token', refresh_token)
        expires_at = self.now() + timedelta(seconds=int(tokens.get('expires_in', 7200)))

        values = self.store_tokens(connection['id'], access_token, new_refresh, expires_at)
        connection.update(values)
        logger.info(f"✅ Token refreshed for connection {connection.get('id')} (token: <redacted>)")
        return access_token


_vault = None


def get_token_vault() -> TokenVault:
    """Process-wide vault built from config"""
    global _vault
    if _vault is None:
        from storage.supabase_store import get_store
        _vault = TokenVault(config.PCO_TOKEN_ENCRYPTION_KEY, get_store())
    return _vault
