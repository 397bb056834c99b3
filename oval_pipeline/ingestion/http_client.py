"""
HTTP utilities for the advisory source and the HTTP sink.

Provides a shared session with per-request timeouts, optional rate
limiting, and optional retries with backoff. Retries are off by default:
a failed download aborts the fetch cycle and is retried by whoever
scheduled it.
"""
import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, Optional

import requests

from ..errors import DownloadError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


@dataclass
class RetryConfig:
    max_retries: int = 0
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0
    jitter_ratio: float = 0.3
    timeout_seconds: float = 60.0

    def delay_for(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Exponential backoff with jitter, never shorter than Retry-After."""
        base = min(self.max_delay_seconds, self.base_delay_seconds * (2 ** attempt))
        delay = base * (1 + random.uniform(0, self.jitter_ratio))
        if retry_after is not None:
            delay = max(delay, retry_after)
        return delay


class RateLimiter:
    """
    Token bucket limiting requests per minute.

    With no rate configured acquire() never waits. Burst defaults to a
    single request, which spaces requests evenly.
    """

    def __init__(self, rate_per_minute: Optional[float] = None, burst: Optional[int] = None):
        self.rate_per_minute = rate_per_minute
        self.burst = max(1, int(burst or 1))
        self._tokens = float(self.burst)
        self._last_refill = time.monotonic()

    @property
    def enabled(self) -> bool:
        return bool(self.rate_per_minute)

    def acquire(self) -> None:
        if not self.enabled:
            return

        per_second = self.rate_per_minute / 60.0
        self._refill(per_second)
        if self._tokens < 1:
            time.sleep((1 - self._tokens) / per_second)
            self._refill(per_second)
        self._tokens -= 1

    def _refill(self, per_second: float) -> None:
        now = time.monotonic()
        self._tokens = min(self.burst, self._tokens + (now - self._last_refill) * per_second)
        self._last_refill = now


def retry_after_seconds(response: requests.Response) -> Optional[float]:
    """Seconds requested by a Retry-After header (delta or HTTP date), if any."""
    value = response.headers.get("Retry-After")
    if not value:
        return None

    try:
        return float(value)
    except ValueError:
        pass

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring unparsable Retry-After header: {value!r}")
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class HttpClient:
    """HTTP client with timeouts, rate limiting, and optional retries."""

    def __init__(
        self,
        source_id: str,
        rate_limit_per_minute: Optional[float] = None,
        rate_limit_burst: Optional[int] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.source_id = source_id
        self.session = requests.Session()
        self.retry_config = retry_config or RetryConfig()
        self.rate_limiter = RateLimiter(rate_limit_per_minute, rate_limit_burst)

    def get_text(self, url: str) -> str:
        """GET a text resource, raising DownloadError on any failure."""
        return self._download(url).text

    def get_bytes(self, url: str) -> bytes:
        """GET a binary resource, raising DownloadError on any failure."""
        return self._download(url).content

    def post_text(self, url: str, body: str, headers: Optional[Dict[str, str]] = None) -> requests.Response:
        """POST a text body. requests exceptions propagate to the caller."""
        return self._request("POST", url, data=body.encode("utf-8"), headers=headers)

    def close(self) -> None:
        self.session.close()

    def _download(self, url: str) -> requests.Response:
        try:
            return self._request("GET", url)
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise DownloadError(f"{self.source_id} download failed: {e}", url=url, status_code=status) from e
        except requests.RequestException as e:
            raise DownloadError(f"{self.source_id} download failed: {e}", url=url) from e

    def _request(
        self,
        method: str,
        url: str,
        data: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        """
        Send one request, retrying transient failures when configured.

        Raises:
            requests.RequestException: On the final failed attempt
        """
        attempt = 0
        while True:
            retries_left = attempt < self.retry_config.max_retries
            self.rate_limiter.acquire()

            try:
                response = self.session.request(
                    method,
                    url,
                    data=data,
                    headers=headers,
                    timeout=self.retry_config.timeout_seconds,
                )
            except requests.RequestException as exc:
                if not retries_left:
                    raise
                logger.warning(f"{method} {url} failed ({exc}); retry {attempt + 1}/{self.retry_config.max_retries}")
                time.sleep(self.retry_config.delay_for(attempt))
                attempt += 1
                continue

            if response.status_code in RETRYABLE_STATUS_CODES and retries_left:
                logger.warning(
                    f"{method} {url} returned HTTP {response.status_code}; "
                    f"retry {attempt + 1}/{self.retry_config.max_retries}"
                )
                time.sleep(self.retry_config.delay_for(attempt, retry_after_seconds(response)))
                attempt += 1
                continue

            response.raise_for_status()
            return response
