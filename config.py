# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Environment-based configuration for the Planning Center sync service
"""
import os
import secrets

# Environment Detection
ENVIRONMENT = os.environ.get('ENVIRONMENT', 'production')
DEBUG = ENVIRONMENT == 'development'

# Application Settings
SECRET_KEY = os.environ.get('SECRET_KEY', secrets.token_hex(32))
PORT = int(os.environ.get('PORT', 5000))
CRON_SECRET = os.environ.get('CRON_SECRET', '')

# Supabase Storage
SUPABASE_URL = os.environ.get('SUPABASE_URL', '').rstrip('/')
SUPABASE_SERVICE_ROLE_KEY = os.environ.get('SUPABASE_SERVICE_ROLE_KEY', '')
SUPABASE_ANON_KEY = os.environ.get('SUPABASE_ANON_KEY', '')
STORAGE_TIMEOUT_SECONDS = int(os.environ.get('STORAGE_TIMEOUT_SECONDS', 30))

# Planning Center OAuth
PCO_API_BASE = os.environ.get('PCO_API_BASE', 'https://api.planningcenteronline.com')
PCO_TOKEN_URL = f"{PCO_API_BASE}/oauth/token"
PCO_AUTHORIZE_URL = f"{PCO_API_BASE}/oauth/authorize"
PCO_CLIENT_ID = os.environ.get('PCO_CLIENT_ID', '')
PCO_CLIENT_SECRET = os.environ.get('PCO_CLIENT_SECRET', '')
PCO_REDIRECT_URI = os.environ.get('PCO_REDIRECT_URI', '')
PCO_SCOPES = ['services', 'people']
PCO_TOKEN_ENCRYPTION_KEY = os.environ.get('PCO_TOKEN_ENCRYPTION_KEY', '')
TOKEN_REFRESH_MARGIN_MINUTES = int(os.environ.get('TOKEN_REFRESH_MARGIN_MINUTES', 5))

# Fetcher Retry Settings
FETCH_MAX_ATTEMPTS = int(os.environ.get('FETCH_MAX_ATTEMPTS', 6))
BACKOFF_BASE_SECONDS = float(os.environ.get('BACKOFF_BASE_SECONDS', 0.5))
BACKOFF_MAX_SECONDS = float(os.environ.get('BACKOFF_MAX_SECONDS', 10.0))
RETRY_AFTER_FLOOR_SECONDS = 0.25
PAGE_PACING_SECONDS = float(os.environ.get('PAGE_PACING_SECONDS', 0.12))
DEFAULT_MAX_PAGES = int(os.environ.get('DEFAULT_MAX_PAGES', 50))
REQUEST_TIMEOUT_SECONDS = int(os.environ.get('REQUEST_TIMEOUT_SECONDS', 30))

# Plan Sync Settings
SYNC_TIME_BUDGET_SECONDS = float(os.environ.get('SYNC_TIME_BUDGET_SECONDS', 55))
SERVICE_TYPE_PACING_SECONDS = 0.2
PLAN_PACING_SECONDS = 0.15
ITEM_FETCH_ATTEMPTS = 3
ITEM_RETRY_BASE_SECONDS = 1.0
INCREMENTAL_LOOKBACK_DAYS = int(os.environ.get('INCREMENTAL_LOOKBACK_DAYS', 30))
FULL_SYNC_LOOKBACK_DAYS = 2 * 365
FLUSH_THRESHOLD_PLANS = int(os.environ.get('FLUSH_THRESHOLD_PLANS', 50))

# Song Library Settings
SONG_LIBRARY_MAX_PAGES = 100
BPM_FETCH_LIMIT = int(os.environ.get('BPM_FETCH_LIMIT', 50))
BPM_FETCH_PACING_SECONDS = 0.2
BPM_BUDGET_RESERVE_SECONDS = 10

# Reconciliation Batch Sizes
UPSERT_BATCH_SIZE = 100
LINK_DELETE_BATCH_SIZE = 500
LINK_INSERT_BATCH_SIZE = 200
ID_LOOKUP_BATCH_SIZE = 100

# Team Roster Settings
ACTIVE_MEMBER_LOOKBACK_DAYS = 365
DISCOVERY_SERVICE_TYPE_BATCH = 3
DISCOVERY_PLAN_BATCH = 5

# Auto Sync Settings
AUTO_SYNC_LOOKBACK_DAYS = int(os.environ.get('AUTO_SYNC_LOOKBACK_DAYS', 14))
AUTO_SYNC_MAX_PAGES = int(os.environ.get('AUTO_SYNC_MAX_PAGES', 10))
AUTO_SYNC_PLAN_PACING_SECONDS = 0.1
AUTO_SYNC_MAX_WORKERS = int(os.environ.get('AUTO_SYNC_MAX_WORKERS', 1))
AUTO_SYNC_INTERVAL_MIN = int(os.environ.get('AUTO_SYNC_INTERVAL_MIN', 360))
SCHEDULER_ENABLED = os.environ.get('SCHEDULER_ENABLED', 'False').lower() == 'true'

# Retry Settings (storage reads)
MAX_RETRIES = int(os.environ.get('MAX_RETRIES', 3))
BASE_DELAY = float(os.environ.get('BASE_DELAY', 1.0))

# Logging
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
STRUCTURED_LOGGING = os.environ.get('STRUCTURED_LOGGING', 'True').lower() == 'true'

# Development Settings
if DEBUG:
    LOG_LEVEL = 'DEBUG'
    AUTO_SYNC_INTERVAL_MIN = 5  # Faster sweeps for development
