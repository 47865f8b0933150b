# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

import os

# One worker keeps the scheduler and per-key run guard in a single process
workers = 1
worker_class = 'gthread'
threads = int(os.environ.get('GUNICORN_THREADS', 4))
timeout = 120  # Above the 55s plan sync budget plus the final flush
keepalive = 2

bind = f"0.0.0.0:{os.environ.get('PORT', '10000')}"

# Logging
loglevel = 'info'
accesslog = '-'
errorlog = '-'

preload_app = False

proc_name = 'pco-sync'

max_requests = 0
max_requests_jitter = 0

print(f"Gunicorn binding to {bind}")
