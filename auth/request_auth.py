# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Caller authentication and connection lookup for sync requests
"""
import hmac
import logging
from typing import Dict, Optional

from storage.supabase_store import eq
from sync.errors import SetupError

logger = logging.getLogger(__name__)


def bearer_token(auth_header: Optional[str]) -> str:
    if not auth_header:
        raise SetupError("No authorization header", 401)
    scheme, _, token = auth_header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        raise SetupError("Authorization header must be a bearer token", 401)
    return token.strip()


def authenticate_request(store, auth_header: Optional[str]) -> Dict:
    """Resolve the caller's Supabase session to their user record"""
    user = store.get_user(bearer_token(auth_header))
    if not user:
        raise SetupError("Unauthorized", 401)
    return user


def load_connection(store, user_id: str) -> Dict:
    connection = store.select_one('pco_connections', '*', [eq('user_id', user_id)])
    if not connection:
        raise SetupError("No Planning Center connection found", 404)
    return connection


def verify_cron_secret(provided: Optional[str], expected: str) -> bool:
    """Constant-time check of the scheduler secret; an unset secret rejects everything"""
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided, expected)
