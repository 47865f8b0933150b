# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Planning Center OAuth - authorize, code exchange and connection lifecycle
"""
import base64
import binascii
import json
import logging
import urllib.parse
from datetime import timedelta
from typing import Dict, Optional

import requests

import config
from auth.token_vault import DecryptionError, TokenVault
from pco_ops.fetcher import PCOClient, UpstreamError
from storage.supabase_store import eq
from sync.errors import SetupError
from utils.timezone import utc_now, to_iso

logger = logging.getLogger(__name__)


class OAuthError(Exception):
    """The authorization handshake could not be completed"""


def encode_state(campus_id: Optional[str], redirect_uri: str) -> str:
    payload = json.dumps({'campusId': campus_id, 'redirectUri': redirect_uri})
    return base64.urlsafe_b64encode(payload.encode('utf-8')).decode('ascii')


def decode_state(state: str) -> Dict:
    try:
        padded = state + '=' * (-len(state) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode('ascii')).decode('utf-8'))
    except (binascii.Error, ValueError, UnicodeError) as e:
        raise OAuthError("Invalid state parameter") from e

    if not isinstance(data, dict) or not _is_http_url(data.get('redirectUri')):
        raise OAuthError("Invalid state parameter")
    return data


def _is_http_url(value) -> bool:
    if not isinstance(value, str):
        return False
    parsed = urllib.parse.urlparse(value)
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


def with_query(url: str, **params) -> str:
    parsed = urllib.parse.urlparse(url)
    query = urllib.parse.parse_qsl(parsed.query)
    query.extend(params.items())
    return urllib.parse.urlunparse(parsed._replace(query=urllib.parse.urlencode(query)))


class PCOOAuth:
    """Runs the OAuth handshake and stores the resulting connection"""

    def __init__(self, store, vault: TokenVault, client: PCOClient,
                 session: Optional[requests.Session] = None):
        self.store = store
        self.vault = vault
        self.client = client
        self.session = session or requests.Session()

    def get_auth_url(self, redirect_uri: Optional[str], campus_id: Optional[str] = None) -> str:
        if not _is_http_url(redirect_uri):
            raise SetupError("redirectUri must be an http(s) URL")
        if not config.PCO_CLIENT_ID:
            raise OAuthError("Planning Center client id is not configured")

        params = {
            'client_id': config.PCO_CLIENT_ID,
            'redirect_uri': config.PCO_REDIRECT_URI,
            'response_type': 'code',
            'scope': ' '.join(config.PCO_SCOPES),
            'state': encode_state(campus_id, redirect_uri),
        }
        return f"{config.PCO_AUTHORIZE_URL}?" + urllib.parse.urlencode(params)

    def exchange_code_for_token(self, code: str) -> Dict:
        try:
            response = self.session.post(config.PCO_TOKEN_URL, json={
                'grant_type': 'authorization_code',
                'code': code,
                'client_id': config.PCO_CLIENT_ID,
                'client_secret': config.PCO_CLIENT_SECRET,
                'redirect_uri': config.PCO_REDIRECT_URI,
            }, timeout=config.REQUEST_TIMEOUT_SECONDS)
        except requests.RequestException as e:
            raise OAuthError(f"Token exchange failed: {type(e).__name__}") from e

        if response.status_code != 200:
            logger.error(f"Token exchange failed ({response.status_code}): {response.text[:200]}")
            raise OAuthError("Failed to exchange authorization code")

        tokens = response.json()
        if not tokens.get('access_token') or not tokens.get('refresh_token'):
            raise OAuthError("Token exchange response was missing tokens")
        return tokens

    def handle_callback(self, code: Optional[str], state: Optional[str],
                        error: Optional[str] = None) -> str:
        """
        Complete the handshake and return the URL to redirect the browser to.

        The tokens travel back to the app as an encrypted connection code, which
        the signed-in user then hands to save_connection.
        """
        if error:
            raise OAuthError("Authorization was denied")
        if not code or not state:
            raise OAuthError("Invalid callback parameters")

        state_data = decode_state(state)
        tokens = self.exchange_code_for_token(code)
        logger.info("✅ Token exchange successful (token: <redacted>)")

        try:
            organization = self.client.fetch_organization_name(tokens['access_token'])
        except UpstreamError as e:
            logger.warning(f"⚠️ Could not read organization name: {e}")
            organization = 'Your Organization'

        expires_at = utc_now() + timedelta(seconds=int(tokens.get('expires_in', 7200)))
        connection_data = {
            'access_token': tokens['access_token'],
            'refresh_token': tokens['refresh_token'],
            'token_expires_at': to_iso(expires_at),
            'pco_organization_name': organization,
            'campus_id': state_data.get('campusId') or None,
        }
        connection_code = self.vault.encrypt(json.dumps(connection_data))
        return with_query(state_data['redirectUri'], pco_connection=connection_code)

    def save_connection(self, user_id: str, connection_code: Optional[str]) -> Dict:
        """Store the caller's connection with both tokens encrypted; one connection per user"""
        if not connection_code:
            raise SetupError("connectionCode is required")

        try:
            data = json.loads(self.vault.decrypt(connection_code))
        except (DecryptionError, ValueError) as e:
            raise SetupError("Invalid connection code") from e

        record = {
            'user_id': user_id,
            'access_token_encrypted': self.vault.encrypt(data['access_token']),
            'refresh_token_encrypted': self.vault.encrypt(data['refresh_token']),
            'token_expires_at': data['token_expires_at'],
            'pco_organization_name': data.get('pco_organization_name'),
            'campus_id': data.get('campus_id'),
            'connected_at': to_iso(utc_now()),
        }
        saved = self.store.upsert('pco_connections', [record], on_conflict='user_id')
        logger.info(f"✅ Planning Center connection saved for user {user_id}")

        row = saved[0] if saved else record
        return {
            'id': row.get('id'),
            'pco_organization_name': row.get('pco_organization_name'),
            'campus_id': row.get('campus_id'),
            'connected_at': row.get('connected_at'),
        }

    def disconnect(self, user_id: str) -> bool:
        deleted = self.store.delete('pco_connections', [eq('user_id', user_id)])
        logger.info(f"Planning Center connection removed for user {user_id}")
        return bool(deleted)
