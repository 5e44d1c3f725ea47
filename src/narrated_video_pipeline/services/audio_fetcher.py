"""Download pre-recorded audio clips over HTTP."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Callable, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import get_settings
from ..exceptions import AudioFetchError, RateLimitedError
from ..logging_config import LoggerMixin
from ..utils.file_utils import write_bytes_safe
from ..utils.retry import BackoffPolicy, call_with_backoff


class RemoteAudioFetcher(LoggerMixin):
    """Fetch audio clips of any container/codec to local files.

    Only rate-limit responses (HTTP 429) are retried, using the same backoff
    policy as speech synthesis. Connection errors get a couple of quick
    transport-level retries; every other failure is final.
    """

    def __init__(
        self,
        settings=None,
        session: Optional[requests.Session] = None,
        policy: Optional[BackoffPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings or get_settings()
        self.timeout = int(self.settings.fetch_timeout_seconds)
        self.body_limit = int(self.settings.fetch_error_body_chars)
        self.policy = policy or BackoffPolicy.from_settings(self.settings)
        self._sleep = sleep

        if session is None:
            # Only 429 is retried, by call_with_backoff
            retries = Retry(total=0, raise_on_status=False)
            adapter = HTTPAdapter(max_retries=retries)
            session = requests.Session()
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session

    def fetch(self, url: str, output_path: Path) -> Path:
        """
        Download ``url`` to ``output_path``.

        Raises:
            AudioFetchError: Non-2xx status, transport error or empty body
            RateLimitExhaustedError: The server kept answering 429
        """
        if not url or not url.strip():
            raise AudioFetchError("Download failed: empty URL", url=url or "")

        content = call_with_backoff(
            lambda: self._get(url.strip()),
            self.policy,
            description=f"download {url}",
            sleep=self._sleep,
        )
        write_bytes_safe(output_path, content)
        self.logger.info("Audio downloaded", url=url, output=str(output_path), size_bytes=len(content))
        return Path(output_path)

    def _get(self, url: str) -> bytes:
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise AudioFetchError(f"Download failed: {url}: {exc}", url=url) from exc

        if response.status_code == 429:
            raise RateLimitedError(
                f"Download rate limited 429: {url}",
                retry_after=_retry_after_seconds(response.headers.get("Retry-After")),
            )

        if not response.ok:
            body = (response.text or "")[: self.body_limit]
            raise AudioFetchError(
                f"Download failed {response.status_code}: {url}: {body}",
                url=url,
                status_code=response.status_code,
                body=body,
            )

        if not response.content:
            raise AudioFetchError(f"Download returned an empty body: {url}", url=url, status_code=response.status_code)
        return response.content


def _retry_after_seconds(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None
