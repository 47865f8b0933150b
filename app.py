# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

#!/usr/bin/env python3
"""
Planning Center Sync Service - Flask entry point
"""
import logging
import os
import threading
from dataclasses import dataclass
from typing import Optional

from flask import Flask, jsonify, redirect, request

import config
from auth.pco_oauth import OAuthError, PCOOAuth, decode_state, with_query
from auth.request_auth import authenticate_request, load_connection, verify_cron_secret
from auth.token_vault import CredentialError, TokenVault, get_token_vault
from pco_ops.fetcher import PCOClient, UpstreamError
from storage.supabase_store import StorageError, SupabaseStore, eq, get_store
from sync.auto_sync import AutoSync, parse_lookback_days
from sync.coordinator import PlanSyncCoordinator
from sync.errors import SetupError, SyncAlreadyRunningError
from sync.schedule import ScheduleRequest, ScheduleSync
from sync.scheduler import SyncScheduler
from sync.team import TeamSync
from sync.window import SyncOptions
from utils.logger import configure_logging
from utils.timezone import get_central_time

configure_logging(config.LOG_LEVEL, config.STRUCTURED_LOGGING)
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.secret_key = config.SECRET_KEY


@dataclass
class Components:
    store: SupabaseStore
    vault: TokenVault
    client: PCOClient
    oauth: PCOOAuth
    coordinator: PlanSyncCoordinator
    team_sync: TeamSync
    schedule_sync_factory: object
    auto_sync: AutoSync
    scheduler: Optional[SyncScheduler] = None


_components: Optional[Components] = None
_components_lock = threading.Lock()


def build_components() -> Components:
    store = get_store()
    vault = get_token_vault()
    client = PCOClient()
    auto_sync = AutoSync(store, client, vault)
    return Components(
        store=store,
        vault=vault,
        client=client,
        oauth=PCOOAuth(store, vault, client),
        coordinator=PlanSyncCoordinator(store, client, vault),
        team_sync=TeamSync(store, client, vault),
        schedule_sync_factory=lambda: ScheduleSync(store, client, vault),
        auto_sync=auto_sync,
        scheduler=SyncScheduler(auto_sync) if config.SCHEDULER_ENABLED else None,
    )


def get_components() -> Components:
    """Initialize components on first request to avoid startup delays"""
    global _components
    with _components_lock:
        if _components is None:
            _components = build_components()
            logger.info("✅ Components initialized on first request")
            if _components.scheduler:
                _components.scheduler.start()
        return _components


@app.after_request
def add_security_headers(response):
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
    response.headers['Cache-Control'] = 'no-store'
    return response


# Error mapping

@app.errorhandler(SetupError)
def handle_setup_error(e):
    logger.warning(f"Request rejected ({e.status_code}): {e}")
    return jsonify({"success": False, "error": str(e)}), e.status_code


@app.errorhandler(SyncAlreadyRunningError)
def handle_already_running(e):
    return jsonify({"success": False, "status": "already_running", "error": str(e)}), 409


@app.errorhandler(CredentialError)
def handle_credential_error(e):
    logger.error(f"❌ Credential error: {e}")
    return jsonify({
        "success": False,
        "error": str(e),
        "needs_reauthorization": e.needs_reauthorization,
    }), 502


@app.errorhandler(UpstreamError)
def handle_upstream_error(e):
    logger.error(f"❌ Planning Center error: {e}")
    return jsonify({"success": False, "error": str(e)}), 502


@app.errorhandler(StorageError)
def handle_storage_error(e):
    logger.error(f"❌ Storage error: {e}")
    return jsonify({"success": False, "error": "Storage unavailable"}), 503


@app.errorhandler(OAuthError)
def handle_oauth_error(e):
    return jsonify({"success": False, "error": str(e)}), 400


@app.errorhandler(500)
def handle_unexpected_error(e):
    original = getattr(e, 'original_exception', None) or e
    logger.error(f"❌ Unhandled error on {request.path}: {original}",
                 exc_info=(type(original), original, original.__traceback__))
    return jsonify({"success": False, "error": "Internal server error"}), 500


def _current_user_and_connection(components: Components):
    user = authenticate_request(components.store, request.headers.get('Authorization'))
    return user, load_connection(components.store, user['id'])


def _json_body():
    return request.get_json(silent=True)


# Routes

@app.route('/health')
def health_check():
    """Lightweight health check - responds immediately"""
    return jsonify({
        "status": "healthy",
        "timestamp": get_central_time().isoformat(),
        "timezone": "America/Chicago",
        "service": "pco-sync",
        "version": "1.0.0"
    }), 200


@app.route('/pco/sync-plans', methods=['POST'])
def sync_plans():
    components = get_components()
    user, connection = _current_user_and_connection(components)
    options = SyncOptions.from_request(_json_body())

    logger.info(f"Plan sync requested by {user['id']} (force_full={options.force_full_sync}, "
                f"years={options.sync_start_year}-{options.sync_end_year}, resume={options.resume})")
    results = components.coordinator.run(connection, options)
    return jsonify({"success": True, "results": results}), 200


@app.route('/pco/sync-team', methods=['POST'])
def sync_team():
    components = get_components()
    _, connection = _current_user_and_connection(components)
    results = components.team_sync.run(connection)
    return jsonify({"success": True, "results": results}), 200


@app.route('/pco/sync-schedule', methods=['POST'])
def sync_schedule():
    components = get_components()
    _, connection = _current_user_and_connection(components)
    schedule_request = ScheduleRequest.from_request(_json_body())
    results = components.schedule_sync_factory().run(connection, schedule_request)
    return jsonify({"success": True, "results": results}), 200


@app.route('/pco/auto-sync', methods=['POST'])
def auto_sync():
    if not verify_cron_secret(request.headers.get('X-Cron-Secret'), config.CRON_SECRET):
        raise SetupError("Unauthorized", 401)

    components = get_components()
    lookback_days = parse_lookback_days(_json_body())
    return jsonify(components.auto_sync.run(lookback_days)), 200


@app.route('/pco/sync-progress')
def sync_progress():
    components = get_components()
    user = authenticate_request(components.store, request.headers.get('Authorization'))
    rows = components.store.select('sync_progress', '*', [eq('user_id', user['id'])],
                                   order='started_at.desc')
    return jsonify({"success": True, "progress": rows}), 200


@app.route('/pco/auth/start', methods=['POST'])
def auth_start():
    components = get_components()
    authenticate_request(components.store, request.headers.get('Authorization'))
    body = _json_body() or {}
    auth_url = components.oauth.get_auth_url(body.get('redirectUri'), body.get('campusId'))
    return jsonify({"authUrl": auth_url}), 200


@app.route('/pco/auth/callback')
def auth_callback():
    """OAuth callback - redirects back to the app with an encrypted connection code"""
    components = get_components()
    state = request.args.get('state')
    try:
        target = components.oauth.handle_callback(request.args.get('code'), state,
                                                  request.args.get('error'))
    except OAuthError as e:
        logger.warning(f"OAuth callback failed: {e}")
        try:
            return redirect(with_query(decode_state(state or '')['redirectUri'], error=str(e)))
        except OAuthError:
            return f"Authentication failed: {e}", 400

    logger.info("OAuth authentication successful")
    return redirect(target)


@app.route('/pco/connection', methods=['POST'])
def save_connection():
    components = get_components()
    user = authenticate_request(components.store, request.headers.get('Authorization'))
    body = _json_body() or {}
    connection = components.oauth.save_connection(user['id'], body.get('connectionCode'))
    return jsonify({"success": True, "connection": connection}), 200


@app.route('/pco/connection', methods=['DELETE'])
def delete_connection():
    components = get_components()
    user = authenticate_request(components.store, request.headers.get('Authorization'))
    removed = components.oauth.disconnect(user['id'])
    return jsonify({"success": True, "removed": removed}), 200


if __name__ == '__main__':
    port = int(os.environ.get('PORT', config.PORT))
    logger.info(f"Starting Planning Center sync service on port {port}")
    app.run(host='0.0.0.0', port=port)
