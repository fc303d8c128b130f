"""
JustCall API Client for retrieving call transcripts
"""
import json
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import aiohttp
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception

from config import Credentials, DateRange, JustCallConfig
from connection_strategies import (
    ConnectionStrategy, PreparedRequest, Transport, build_strategies, select_strategy,
)
from errors import JustCallError, NoDataInRange, TransportUnavailable, classify_exception, classify_http_error
from record_normalizer import TranscriptRecord, extract_records, normalize_record

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


@dataclass(frozen=True)
class FetchRequest:
    """What the caller wants fetched: credentials plus a date range."""
    credentials: Credentials
    date_range: DateRange

    @classmethod
    def from_mapping(cls, data: Mapping[str, str]) -> "FetchRequest":
        return cls(
            Credentials.create(data.get('key'), data.get('secret')),
            DateRange.parse(data.get('start_date', ''), data.get('end_date', '')),
        )


@dataclass
class FetchSession:
    """Mutable state of a single fetch call. Never shared between fetches."""
    strategy: ConnectionStrategy
    records: List[TranscriptRecord] = field(default_factory=list)
    page: int = 1
    has_more: bool = True


@dataclass(frozen=True)
class FetchResult:
    records: tuple
    strategy: str
    pages: int
    date_range: Optional[DateRange] = None

    @property
    def no_data_in_range(self) -> bool:
        return not self.records

    def raise_if_empty(self):
        if self.no_data_in_range:
            if self.date_range:
                raise NoDataInRange(str(self.date_range.start), str(self.date_range.end))
            raise NoDataInRange()

    def __iter__(self):
        return iter(self.records)

    def __len__(self):
        return len(self.records)


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TransportUnavailable) and exc.transient


def _decode(raw: bytes, charset: Optional[str]) -> str:
    # relays and captive portals send arbitrary bytes; never let decoding fail
    try:
        return raw.decode(charset or 'utf-8', errors='replace')
    except LookupError:
        return raw.decode('utf-8', errors='replace')


class JustCallClient:
    """
    Asynchronous client for the JustCall calls endpoint.

    Handles:
    - Connection strategy selection (direct or via relay)
    - Pagination with a fixed delay between pages
    - Error classification
    - Progress reporting through a callback

    Requests are strictly sequential. ``transport`` and ``sleep`` can be
    replaced, which is how the tests run without a network.
    """

    def __init__(self, config: JustCallConfig, transport: Optional[Transport] = None,
                 sleep: Optional[Callable[[float], Any]] = None):
        self.config = config
        self.base_url = config.justcall_base_url
        self.strategies = build_strategies(config.strategy_names, config.local_relay_url)
        self.session: Optional[aiohttp.ClientSession] = None
        self._transport = transport or self._http_get
        self._sleep = sleep or asyncio.sleep
        self._selected: Dict[Credentials, ConnectionStrategy] = {}

    async def __aenter__(self):
        """Async context manager entry."""
        if self._transport == self._http_get:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.api_timeout)
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self.session:
            await self.session.close()
            self.session = None

    async def _http_get(self, request: PreparedRequest, strategy: ConnectionStrategy) -> Any:
        """Issue one GET and return the decoded JSON body, raising classified errors."""
        if self.session is None:
            raise RuntimeError("JustCallClient must be used as an async context manager")

        try:
            async with self.session.get(request.url, params=request.params, headers=request.headers) as response:
                body = _decode(await response.read(), response.charset)
                if response.status >= 400:
                    raise classify_http_error(
                        response.status, body,
                        via_relay=strategy.is_relay,
                        retry_after=response.headers.get('Retry-After'),
                    )
        except JustCallError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Request via {strategy.name} failed: {e!r}")
            raise classify_exception(e) from e

        try:
            return json.loads(body)
        except ValueError:
            raise TransportUnavailable(
                f"Strategy {strategy.name} returned a non-JSON response "
                f"(starts with {body[:60]!r})"
            )

    async def select_strategy(self, credentials: Credentials, force: bool = False) -> ConnectionStrategy:
        """Probe strategies for ``credentials``, reusing an earlier result when allowed."""
        if not force and self.config.reuse_probe and credentials in self._selected:
            return self._selected[credentials]
        strategy = await select_strategy(self._transport, credentials, self.strategies, self.base_url)
        self._selected[credentials] = strategy
        return strategy

    async def test_connection(self, key: str, secret: str) -> ConnectionStrategy:
        """
        Verify credentials with a one-record probe.

        Returns the strategy that worked; raises a JustCallError subclass
        otherwise. An empty call list still counts as success.
        """
        credentials = Credentials.create(key, secret)
        try:
            return await self.select_strategy(credentials, force=True)
        except JustCallError as e:
            logger.error(f"Connection test failed: {e.message}")
            raise

    async def fetch_transcripts(self, request: Union[FetchRequest, Mapping[str, str]],
                                on_progress: Optional[ProgressCallback] = None) -> FetchResult:
        """
        Fetch every call in the date range, one page at a time.

        ``on_progress`` is called after every page with the running total.
        Any classified error aborts the whole fetch; no partial list is
        returned.
        """
        if not isinstance(request, FetchRequest):
            request = FetchRequest.from_mapping(request)

        start_unix, end_unix = request.date_range.to_epoch_interval()
        credentials = request.credentials
        reused = self.config.reuse_probe and credentials in self._selected
        session = FetchSession(strategy=await self.select_strategy(credentials))
        page_size = self.config.page_size
        max_pages = self.config.max_pages

        logger.info(f"Fetching calls {request.date_range} via {session.strategy.name}")

        while session.has_more:
            params = {
                'from': start_unix,
                'to': end_unix,
                'page': session.page,
                'per_page': page_size,
            }
            if self.config.include_transcription:
                params['fetch_transcription'] = True

            try:
                payload = await self._fetch_page(session.strategy, credentials, params)
            except TransportUnavailable as e:
                # a dead path must not stay cached for later fetches
                self._selected.pop(credentials, None)
                if reused and session.page == 1:
                    logger.warning(f"Cached strategy {session.strategy.name} failed ({e.message}); selecting a connection again")
                    reused = False
                    session.strategy = await self.select_strategy(credentials, force=True)
                    continue
                logger.error(f"Error fetching calls page {session.page}: {e.message}")
                raise
            except JustCallError as e:
                logger.error(f"Error fetching calls page {session.page}: {e.message}")
                raise

            calls = extract_records(payload)
            if session.page == 1 and calls and isinstance(calls[0], dict):
                logger.debug(f"Sample call keys: {sorted(calls[0].keys())}")

            session.records.extend(normalize_record(call) for call in calls)
            if on_progress:
                on_progress(len(session.records))

            if len(calls) < page_size:
                session.has_more = False
            elif max_pages and session.page >= max_pages:
                logger.warning(f"Stopping after {max_pages} page(s) (max_pages reached)")
                session.has_more = False
            else:
                session.page += 1
                await self._sleep(self.config.page_delay)

        logger.info(f"Found {len(session.records)} calls in {session.page} page(s)")
        return FetchResult(tuple(session.records), session.strategy.name, session.page, request.date_range)

    async def _fetch_page(self, strategy: ConnectionStrategy, credentials: Credentials,
                          params: Dict[str, Any]) -> Any:
        """Request one page, retrying only transient network failures."""
        request = strategy.build_request(self.base_url, credentials, params)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception(_is_transient),
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                payload = await self._transport(request, strategy)
        return payload
