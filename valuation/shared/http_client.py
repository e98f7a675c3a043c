#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
JSON-over-HTTP client used by price sources and the market snapshot.
Implements retry logic with exponential backoff and 429 detection.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from .errors import RateLimitedError
from .logging_setup import get_logger

logger = get_logger(__name__)


@dataclass
class APIResponse:
    """Generic API response wrapper"""
    success: bool
    data: Any = None
    error: Optional[str] = None
    status_code: Optional[int] = None


class JsonHttpClient:
    """Thin requests.Session wrapper shared by one upstream source"""

    def __init__(
        self,
        source: str,
        base_url: str,
        timeout: float = 5.0,
        retry_attempts: int = 1,
        retry_backoff: float = 0.5,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize client

        Args:
            source: Source name used in errors and logs
            base_url: Prefix joined with request paths
            timeout: Request timeout in seconds
            retry_attempts: Number of attempts (1 = no retry)
            retry_backoff: Base backoff time between retries
            headers: Extra headers sent with every request
            session: Pre-built session (tests inject fakes here)
        """
        self.source = source
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.retry_attempts = max(1, int(retry_attempts))
        self.retry_backoff = retry_backoff
        self.session = session or requests.Session()
        self.session.headers.update({
            'Accept': 'application/json',
            'User-Agent': 'WalletValuationEngine/1.0',
        })
        if headers:
            self.session.headers.update(headers)

    def url_for(self, path: str) -> str:
        if not path:
            return self.base_url
        return f"{self.base_url}/{path.lstrip('/')}"

    def get(self, path: str = "", params: Optional[Dict[str, Any]] = None) -> APIResponse:
        """
        GET a JSON document with retry logic

        Returns:
            APIResponse with success status and data/error

        Raises:
            RateLimitedError: On HTTP 429 (never retried)
        """
        url = self.url_for(path)
        last_error = None

        for attempt in range(self.retry_attempts):
            try:
                logger.debug(f"{self.source} GET {url} (attempt {attempt + 1}/{self.retry_attempts})")
                response = self.session.get(url, params=params, timeout=self.timeout)

                if response.status_code == 429:
                    logger.warning(f"{self.source} rate limited (HTTP 429)")
                    raise RateLimitedError(self.source, "HTTP 429 Too Many Requests")

                if response.status_code == 200:
                    try:
                        return APIResponse(success=True, data=response.json(), status_code=200)
                    except ValueError as e:
                        error_msg = f"Invalid JSON from {self.source}: {e}"
                        logger.warning(error_msg)
                        return APIResponse(success=False, error=error_msg, status_code=200)

                last_error = f"HTTP {response.status_code}: {response.text[:200]}"
                logger.warning(f"{self.source} request failed: {last_error}")

                # Client errors other than 429 will not improve on retry
                if 400 <= response.status_code < 500:
                    return APIResponse(success=False, error=last_error, status_code=response.status_code)

            except requests.exceptions.Timeout:
                last_error = f"Request timeout after {self.timeout}s"
                logger.warning(f"{self.source} attempt {attempt + 1} timed out")

            except requests.exceptions.ConnectionError as e:
                last_error = f"Connection error: {str(e)}"
                logger.warning(f"{self.source} attempt {attempt + 1} connection failed")

            except requests.exceptions.RequestException as e:
                last_error = f"Request error: {str(e)}"
                logger.warning(f"{self.source} attempt {attempt + 1} failed: {e}")

            if attempt < self.retry_attempts - 1:
                backoff_time = self.retry_backoff * (2 ** attempt)
                logger.debug(f"Retrying in {backoff_time}s...")
                time.sleep(backoff_time)

        logger.warning(f"{self.source}: all {self.retry_attempts} attempts failed. Last error: {last_error}")
        return APIResponse(success=False, error=last_error)

    def close(self) -> None:
        self.session.close()
