"""Source adapter interface and the shared pagination/retry engine."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, TypeVar

import httpx

from odin.errors import AuthenticationError, FetchError, ServerOverloadedError

logger = logging.getLogger(__name__)

RawT = TypeVar("RawT")
RecordT = TypeVar("RecordT")
T = TypeVar("T")

Cursor = dict[str, Any]

_DEFAULT_TIMEOUT = 30.0
_OVERLOADED_STATUSES = frozenset({429, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    """How a failed page fetch is retried.

    Ordinary failures wait base_delay * 2**attempt. When overload_cooldown is
    set, ServerOverloadedError waits that long instead (or the server's
    Retry-After, if longer).
    """

    max_retries: int = 3
    base_delay: float = 2.0
    overload_cooldown: float | None = None

    def delay_for(self, attempt: int, exc: Exception) -> float:
        if isinstance(exc, ServerOverloadedError) and self.overload_cooldown is not None:
            return max(self.overload_cooldown, exc.retry_after or 0.0)
        return self.base_delay * (2 ** attempt)


@dataclass(frozen=True)
class AdapterDescriptor:
    """Immutable identity and request budget of one adapter."""

    name: str
    base_url: str
    min_interval: float = 0.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)


@dataclass(frozen=True)
class FetchPageResult(Generic[RawT]):
    """One page of raw items plus the cursor changes for the next page."""

    data: list[RawT]
    has_more: bool
    next_cursor: Cursor | None = None


class SourceAdapter(ABC, Generic[RawT, RecordT]):
    """Abstract base class for source adapters.

    Subclasses implement fetch_page() and normalize(); fetch_all() drives
    pagination, and every HTTP request goes through the rate gate in
    _request(). Sleep and clock are injectable so tests never wait.
    """

    descriptor: AdapterDescriptor

    def __init__(
        self,
        client: httpx.Client | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep
        self._monotonic = monotonic
        self._last_request_at: float | None = None

    @property
    def name(self) -> str:
        return self.descriptor.name

    @abstractmethod
    def fetch_page(self, cursor: Cursor) -> FetchPageResult[RawT]:
        """Fetch one page of raw items for the given cursor."""

    @abstractmethod
    def normalize(self, raw: RawT) -> RecordT | None:
        """Convert one raw item to a record. None drops the item."""

    # --- Pagination engine ---

    def fetch_all(self, initial_cursor: Cursor | None = None) -> list[RecordT]:
        """Page through the source until it reports no more data.

        Each page is fetched through the retry wrapper. A page that exhausts
        its retries raises, discarding nothing already returned by earlier
        calls but ending this pagination run. An item whose normalize() fails
        is logged and dropped.
        """
        cursor: Cursor = dict(initial_cursor or {})
        records: list[RecordT] = []
        pages = 0
        skipped = 0
        while True:
            page = self._with_retry(lambda: self.fetch_page(cursor), what=f"page {pages + 1}")
            pages += 1
            for raw in page.data:
                record = self._normalize_or_skip(raw)
                if record is not None:
                    records.append(record)
                else:
                    skipped += 1
            if not page.has_more:
                break
            if page.next_cursor:
                cursor = {**cursor, **page.next_cursor}
        logger.info(
            "%s: fetched %d record(s) over %d page(s), %d skipped",
            self.name, len(records), pages, skipped,
        )
        return records

    def _normalize_or_skip(self, raw: RawT) -> RecordT | None:
        try:
            return self.normalize(raw)
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            logger.warning("%s: dropping malformed item: %r", self.name, exc)
            return None

    def _with_retry(self, fn: Callable[[], T], what: str = "request") -> T:
        """Call fn, retrying FetchError per the descriptor's retry policy.

        AuthenticationError and non-fetch errors propagate immediately.
        """
        policy = self.descriptor.retry
        for attempt in range(policy.max_retries + 1):
            try:
                return fn()
            except AuthenticationError:
                raise
            except FetchError as exc:
                if attempt >= policy.max_retries:
                    logger.error(
                        "%s: %s failed after %d attempt(s): %s",
                        self.name, what, attempt + 1, exc,
                    )
                    raise
                delay = policy.delay_for(attempt, exc)
                logger.warning(
                    "%s: %s failed (retry %d/%d in %.1fs): %s",
                    self.name, what, attempt + 1, policy.max_retries, delay, exc,
                )
                self._sleep(delay)
        raise AssertionError("unreachable")

    # --- HTTP ---

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=_DEFAULT_TIMEOUT)
        return self._client

    def close(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None

    def _wait_for_rate_limit(self) -> None:
        interval = self.descriptor.min_interval
        if interval > 0 and self._last_request_at is not None:
            elapsed = self._monotonic() - self._last_request_at
            if elapsed < interval:
                self._sleep(interval - elapsed)
        self._last_request_at = self._monotonic()

    def _request(
        self,
        method: str,
        url: str,
        *,
        rate_limited: bool = True,
        check: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """Issue one HTTP request, translating transport failures to FetchError.

        With check=True, overload statuses raise ServerOverloadedError and any
        other non-2xx raises FetchError.
        """
        if rate_limited:
            self._wait_for_rate_limit()
        try:
            response = self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise FetchError(f"{self.name}: timed out requesting {url}") from exc
        except httpx.HTTPError as exc:
            raise FetchError(f"{self.name}: request to {url} failed: {exc}") from exc
        if check:
            self._check_status(response)
        return response

    def _check_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return
        url = response.request.url
        if status in _OVERLOADED_STATUSES:
            raise ServerOverloadedError(
                f"{self.name}: HTTP {status} (server overloaded) from {url}",
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )
        raise FetchError(f"{self.name}: HTTP {status} from {url}")

    def _get_json(self, url: str, **kwargs: Any) -> Any:
        response = self._request("GET", url, **kwargs)
        return _decode_json(self.name, response)


def _decode_json(adapter_name: str, response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise FetchError(f"{adapter_name}: invalid JSON in response") from exc


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None
