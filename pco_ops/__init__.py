# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

from pco_ops.fetcher import PCOClient, UpstreamError, UpstreamExhaustedError, parse_retry_after
