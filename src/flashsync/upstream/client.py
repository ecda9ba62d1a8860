"""
Upstream feed client.

Fetches one snapshot of the flash feed over aiohttp. Transient failures are
retried on the same egress path; when a path is exhausted the next one is
tried, primary proxies first and fallback proxies after. Either a complete,
validated FeedSnapshot comes back or the call raises.
"""

import asyncio
import json
from typing import Any

import aiohttp

from flashsync import __version__
from flashsync.config.settings import UpstreamSettings, redact_url
from flashsync.core.retry.manager import RetryManager
from flashsync.core.retry.policy import RetryPolicy
from flashsync.core.types import FeedSnapshot, FlashRecord
from flashsync.exceptions import InvalidUpstreamResponse, UpstreamUnavailable
from flashsync.utils.logging import get_logger

logger = get_logger("flashsync.upstream.client")

# Failures worth another attempt on the same path
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (aiohttp.ClientError, asyncio.TimeoutError)


def parse_feed(
    payload: Any,
    *,
    filtered_key: str = "with_paris",
    unfiltered_key: str = "without_paris",
    fingerprint_key: str = "flash_count",
) -> FeedSnapshot:
    """
    Validate a decoded feed payload and build a FeedSnapshot.

    Both subsets must be non-empty lists of records. A missing fingerprint
    falls back to the total record count.

    Raises:
        InvalidUpstreamResponse: If the payload is malformed or a subset is empty
    """
    if not isinstance(payload, dict):
        raise InvalidUpstreamResponse(f"Feed payload must be an object, got {type(payload).__name__}")

    subsets: dict[str, list[FlashRecord]] = {}
    for key in (filtered_key, unfiltered_key):
        items = payload.get(key)
        if not isinstance(items, list):
            raise InvalidUpstreamResponse(f"Feed field '{key}' is missing or not a list", details={"field": key})
        if not items:
            raise InvalidUpstreamResponse(f"Feed field '{key}' is empty", details={"field": key})
        try:
            subsets[key] = [FlashRecord.from_dict(item) for item in items]
        except (AttributeError, TypeError, ValueError) as e:
            raise InvalidUpstreamResponse(f"Malformed record in '{key}': {e}", details={"field": key}) from e

    raw_fingerprint = payload.get(fingerprint_key)
    if raw_fingerprint is None or str(raw_fingerprint).strip() == "":
        fingerprint = str(len(subsets[filtered_key]) + len(subsets[unfiltered_key]))
        logger.debug(f"Feed has no '{fingerprint_key}', using record count {fingerprint} as fingerprint")
    else:
        fingerprint = str(raw_fingerprint).strip()

    return FeedSnapshot(filtered=subsets[filtered_key], unfiltered=subsets[unfiltered_key], fingerprint=fingerprint)


class UpstreamClient:
    """
    Client for the upstream flash feed.

    Example:
        ```python
        async with UpstreamClient(settings.upstream) as client:
            snapshot = await client.fetch()
        ```
    """

    def __init__(
        self,
        settings: UpstreamSettings,
        *,
        retry_manager: RetryManager | None = None,
        headers: dict[str, str] | None = None,
    ):
        """
        Initialize the client.

        Args:
            settings: Upstream settings (URL, timeout, proxies, attempts)
            retry_manager: Retry runner (default: RetryManager())
            headers: Extra request headers
        """
        self.settings = settings
        self.retry_manager = retry_manager or RetryManager()
        self.timeout = aiohttp.ClientTimeout(total=settings.timeout_s)
        self.headers = {"Accept": "application/json", "User-Agent": f"flashsync/{__version__}", **(headers or {})}
        self.policy = RetryPolicy(
            max_attempts=max(settings.attempts_per_path - 1, 0),
            initial_delay=settings.retry_delay_s if settings.retry_delay_s > 0 else 0.001,
            max_delay=max(settings.retry_delay_s * 8, 0.001),
            retryable_exceptions=TRANSIENT_ERRORS,
        )

        self.session: aiohttp.ClientSession | None = None
        self._session_lock = asyncio.Lock()
        # Round-robin start within the primary list
        self._next_primary = 0

    async def _ensure_session(self) -> aiohttp.ClientSession:
        async with self._session_lock:
            if self.session is None or self.session.closed:
                self.session = aiohttp.ClientSession(timeout=self.timeout, headers=self.headers)
            return self.session

    async def close(self) -> None:
        """Close the HTTP session."""
        async with self._session_lock:
            if self.session and not self.session.closed:
                await self.session.close()
            self.session = None

    async def __aenter__(self) -> "UpstreamClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        await self.close()

    def egress_paths(self) -> list[str | None]:
        """
        Ordered egress paths for one fetch.

        The primary list is rotated so successive fetches start on successive
        proxies; the fallback list follows in configured order. With no
        proxies configured the only path is a direct connection (None).
        """
        primary = list(self.settings.proxies)
        if primary:
            start = self._next_primary % len(primary)
            primary = primary[start:] + primary[:start]
            self._next_primary = start + 1
        paths: list[str | None] = [*primary, *self.settings.fallback_proxies]
        return paths or [None]

    async def fetch(self) -> FeedSnapshot:
        """
        Fetch and validate the current feed snapshot.

        Raises:
            UpstreamUnavailable: If every attempt on every egress path failed
            InvalidUpstreamResponse: If a response arrived but is malformed or has an empty subset
        """
        session = await self._ensure_session()
        paths = self.egress_paths()
        attempts = 0
        last_error: BaseException | None = None

        for index, proxy in enumerate(paths):
            label = redact_url(proxy) if proxy else "direct"
            attempts_before = attempts

            async def _attempt() -> Any:
                nonlocal attempts
                attempts += 1
                return await self._get_json(session, proxy)

            try:
                payload = await self.retry_manager.execute(_attempt, policy=self.policy, name=f"fetch via {label}")
            except TRANSIENT_ERRORS as e:
                last_error = e
                logger.warning(
                    f"Upstream path {index + 1}/{len(paths)} ({label}) exhausted after "
                    f"{attempts - attempts_before} attempts: {e}"
                )
                continue

            snapshot = parse_feed(
                payload,
                filtered_key=self.settings.filtered_key,
                unfiltered_key=self.settings.unfiltered_key,
                fingerprint_key=self.settings.fingerprint_key,
            )
            logger.info(
                f"Fetched {snapshot.total} records ({len(snapshot.filtered)} filtered, "
                f"{len(snapshot.unfiltered)} unfiltered) via {label}, fingerprint={snapshot.fingerprint}"
            )
            return snapshot

        raise UpstreamUnavailable(
            f"Upstream unavailable after {attempts} attempts on {len(paths)} path(s): {last_error}",
            attempts=attempts,
            paths=len(paths),
        )

    async def _get_json(self, session: aiohttp.ClientSession, proxy: str | None) -> Any:
        async with session.get(self.settings.url, proxy=proxy) as response:
            response.raise_for_status()
            body = await response.text()
        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise InvalidUpstreamResponse(f"Feed response is not valid JSON: {e}") from e
