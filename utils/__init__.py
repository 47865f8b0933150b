# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

from utils.logger import StructuredLogger, JsonFormatter, configure_logging
from utils.retry import retry_with_backoff, RetryContext, backoff_delay
from utils.timezone import (
    utc_now,
    get_central_time,
    format_central_time,
    parse_timestamp,
    to_iso,
)
