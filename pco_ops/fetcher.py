# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Planning Center Fetcher - rate-limit aware GETs and link-following pagination
"""
import logging
import time
from typing import Callable, Dict, List, Optional

import requests

import config
from utils.logger import StructuredLogger
from utils.retry import backoff_delay

logger = logging.getLogger(__name__)
api_logger = StructuredLogger(__name__)


class UpstreamError(Exception):
    """Planning Center returned a non-retryable error status"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamExhaustedError(UpstreamError):
    """Every attempt hit a rate limit, a server error or a dropped connection"""


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds from a Retry-After header; None when absent or not numeric"""
    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except (ValueError, AttributeError):
        return None
    if seconds != seconds or seconds < 0:
        return None
    return seconds


class PCOClient:
    """
    Blocking Planning Center Services client

    Usage:
        client = PCOClient()
        service_types = client.fetch_all_pages(token, '/services/v2/service_types')
    """

    def __init__(self, session: Optional[requests.Session] = None,
                 base_url: str = config.PCO_API_BASE,
                 sleep: Callable[[float], None] = time.sleep,
                 max_attempts: int = config.FETCH_MAX_ATTEMPTS,
                 page_pacing: float = config.PAGE_PACING_SECONDS):
        self.session = session or requests.Session()
        self.base_url = base_url.rstrip('/')
        self.sleep = sleep
        self.max_attempts = max_attempts
        self.page_pacing = page_pacing

    def _backoff(self, attempt: int) -> float:
        return backoff_delay(attempt - 1, config.BACKOFF_BASE_SECONDS, config.BACKOFF_MAX_SECONDS)

    def _url(self, path: str) -> str:
        if path.startswith('http'):
            return path
        return f"{self.base_url}{path}"

    def fetch_one(self, token: str, path: str) -> Dict:
        """
        GET one document, retrying 429 and transient failures.

        429 waits Retry-After (floored at 0.25 s) when the header parses, otherwise
        the capped exponential backoff used for 5xx and connection errors. Other
        error statuses raise UpstreamError at once.
        """
        url = self._url(path)
        headers = {'Authorization': f'Bearer {token}', 'Accept': 'application/json'}
        last_problem = 'no attempts made'

        for attempt in range(1, self.max_attempts + 1):
            started = time.monotonic()
            try:
                response = self.session.get(url, headers=headers, timeout=config.REQUEST_TIMEOUT_SECONDS)
            except (requests.ConnectionError, requests.Timeout) as e:
                last_problem = type(e).__name__
                api_logger.log_api_call('GET', path, error=last_problem, attempt=attempt)
                delay = self._backoff(attempt)
            else:
                duration_ms = (time.monotonic() - started) * 1000
                status = response.status_code
                api_logger.log_api_call('GET', path, status_code=status,
                                        duration_ms=duration_ms, attempt=attempt)

                if status < 400:
                    return response.json()

                if status == 429:
                    retry_after = parse_retry_after(response.headers.get('Retry-After'))
                    if retry_after is not None:
                        delay = max(config.RETRY_AFTER_FLOOR_SECONDS, retry_after)
                    else:
                        delay = self._backoff(attempt)
                    last_problem = 'rate limited (429)'
                    logger.warning(f"⚠️ Rate limited on {path}, waiting {delay:.2f}s "
                                   f"(attempt {attempt}/{self.max_attempts})")
                elif status >= 500:
                    last_problem = f"server error ({status})"
                    delay = self._backoff(attempt)
                    logger.warning(f"⚠️ PCO {status} on {path}, retrying in {delay:.2f}s "
                                   f"(attempt {attempt}/{self.max_attempts})")
                else:
                    raise UpstreamError(f"PCO API error {status} for {path}: {response.text[:200]}", status)

            if attempt < self.max_attempts:
                self.sleep(delay)

        raise UpstreamExhaustedError(f"PCO API retries exhausted for {path}: {last_problem}")

    def _walk_pages(self, token: str, path: str, max_pages: int, strict: bool = False):
        next_path = path
        page = 0

        while next_path and page < max_pages:
            try:
                document = self.fetch_one(token, next_path)
            except UpstreamError as e:
                if strict:
                    raise
                logger.error(f"❌ Stopping pagination of {path} at page {page + 1}: {e}")
                break

            page += 1
            yield document

            next_link = (document.get('links') or {}).get('next')
            next_path = next_link.replace(self.base_url, '') if next_link else None

            if page % 10 == 0:
                logger.info(f"Fetched {page} pages from {path}")

            if next_path and page < max_pages:
                self.sleep(self.page_pacing)

        if next_path and page >= max_pages:
            logger.warning(f"⚠️ Reached max pages ({max_pages}) for {path}; results truncated")

    def fetch_all_pages(self, token: str, path: str,
                        max_pages: int = config.DEFAULT_MAX_PAGES, strict: bool = False) -> List[Dict]:
        """
        All `data` resources across pages.

        A failing page truncates the result and is logged; pass strict=True to
        raise instead when a partial listing would be mistaken for a complete one.
        """
        resources = []
        for document in self._walk_pages(token, path, max_pages, strict):
            resources.extend(document.get('data') or [])
        return resources

    def fetch_all_documents(self, token: str, path: str,
                            max_pages: int = config.DEFAULT_MAX_PAGES) -> Dict[str, List[Dict]]:
        """Like fetch_all_pages but keeps sideloaded `included` resources too"""
        merged = {'data': [], 'included': []}
        for document in self._walk_pages(token, path, max_pages):
            merged['data'].extend(document.get('data') or [])
            merged['included'].extend(document.get('included') or [])
        return merged

    def fetch_organization_name(self, token: str) -> str:
        document = self.fetch_one(token, '/services/v2')
        parent = (document.get('meta') or {}).get('parent') or {}
        return parent.get('name') or 'Your Organization'
