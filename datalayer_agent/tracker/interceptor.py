"""
Network interceptor.

Observes every response the page's two HTTP capabilities receive (the
``aiohttp`` session used like ``fetch`` and the ``requests`` session used like
XHR) and turns cart and search traffic into analytics events. Both adapters
feed one classification/dispatch path. Responses are never altered: the
aiohttp adapter keeps a copy of the body bytes as the caller reads them and
classifies once the stream reaches EOF, and the requests hook always returns
None so requests keeps the original object.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Set, Tuple
from urllib.parse import parse_qs, urlsplit

import aiohttp
import requests
from aiohttp.streams import AsyncStreamIterator, ChunkTupleAsyncStreamIterator

from .cart_state import CartStateTracker
from .config import INTERNAL_REQUEST_HEADER, TrackerConfig
from .context import TrackerContext
from .models import Cart, CartItem, RawEventPayload
from .normalizer import EventNormalizer
from .storefront import StorefrontClient

logger = logging.getLogger(__name__)

CART_ADD_PATTERN = re.compile(r"/cart/add(?:\.js)?$")
CART_CHANGE_PATTERN = re.compile(r"/cart/(?:change|update|clear)(?:\.js)?$")
SEARCH_PATTERN = re.compile(r"/search(?:/suggest)?(?:\.json)?$")


class RequestKind(str, Enum):
    """What an observed request means for analytics."""
    SEARCH = "search"
    CART_ADD = "cart_add"
    CART_CHANGE = "cart_change"


def classify(url: Any) -> Optional[RequestKind]:
    """
    Classify a request URL.

    Args:
        url: Request URL (str or yarl.URL)

    Returns:
        RequestKind, or None for traffic the tracker ignores
    """
    parts = urlsplit(str(url))
    path = parts.path.rstrip("/")

    if CART_ADD_PATTERN.search(path):
        return RequestKind.CART_ADD
    if CART_CHANGE_PATTERN.search(path):
        return RequestKind.CART_CHANGE
    if SEARCH_PATTERN.search(path) and search_term_from_url(url):
        return RequestKind.SEARCH
    return None


def search_term_from_url(url: Any) -> Optional[str]:
    values = parse_qs(urlsplit(str(url)).query).get("q") or []
    term = values[0].strip() if values else ""
    return term or None


@dataclass(frozen=True)
class ObservedResponse:
    """What the interceptor keeps from a response: a copy, never the live object."""
    url: str
    method: str
    status: int
    body: Optional[bytes] = None

    def json(self) -> Any:
        return json.loads(self.body or b"null")


class ObservedStream:
    """
    Stands in for a response's ``content`` stream.

    Every read is delegated to the original ``aiohttp.StreamReader`` and the
    returned bytes go to the caller untouched; a copy is kept and handed to
    ``on_complete`` once the stream is at EOF. Nothing is read that the caller
    did not ask for.
    """

    def __init__(self, stream: aiohttp.StreamReader, on_complete: Callable[[bytes], None]):
        self._stream = stream
        self._on_complete = on_complete
        self._chunks: List[bytes] = []
        self._completed = False

    def __getattr__(self, name: str) -> Any:
        return getattr(self._stream, name)

    def _record(self, data: bytes) -> bytes:
        if data:
            self._chunks.append(bytes(data))
        if not self._completed and self._stream.at_eof():
            self._completed = True
            self._on_complete(b"".join(self._chunks))
        return data

    async def read(self, n: int = -1) -> bytes:
        return self._record(await self._stream.read(n))

    async def readany(self) -> bytes:
        return self._record(await self._stream.readany())

    async def readline(self) -> bytes:
        return self._record(await self._stream.readline())

    async def readexactly(self, n: int) -> bytes:
        return self._record(await self._stream.readexactly(n))

    async def readchunk(self) -> Tuple[bytes, bool]:
        data, end_of_chunk = await self._stream.readchunk()
        return self._record(data), end_of_chunk

    def iter_chunked(self, n: int) -> AsyncStreamIterator:
        return AsyncStreamIterator(lambda: self.read(n))

    def iter_any(self) -> AsyncStreamIterator:
        return AsyncStreamIterator(self.readany)

    def iter_chunks(self) -> ChunkTupleAsyncStreamIterator:
        return ChunkTupleAsyncStreamIterator(self)

    def __aiter__(self) -> AsyncStreamIterator:
        return AsyncStreamIterator(self.readline)


class NetworkInterceptor:
    """Single classification/dispatch path shared by both HTTP adapters."""

    def __init__(
        self,
        context: TrackerContext,
        normalizer: EventNormalizer,
        cart_tracker: CartStateTracker,
        storefront: Optional[StorefrontClient],
        config: TrackerConfig,
    ):
        self.context = context
        self.normalizer = normalizer
        self.cart_tracker = cart_tracker
        self.storefront = storefront
        self.config = config

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._trace_config: Optional[aiohttp.TraceConfig] = None
        self._hooked_sessions: Set[int] = set()
        self._tasks: Set[asyncio.Task] = set()

        self._search_timer: Optional[asyncio.TimerHandle] = None
        self._pending_search_term: Optional[str] = None
        self._closed = False

    # =========================================================================
    # Installation
    # =========================================================================

    def bind_loop(self) -> None:
        """Bind to the running loop; must be called from inside it."""
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

    @property
    def trace_config(self) -> aiohttp.TraceConfig:
        """The aiohttp adapter. Created once and shared by every session."""
        if self._trace_config is None:
            trace_config = aiohttp.TraceConfig()
            trace_config.on_request_end.append(self._on_aiohttp_request_end)
            self._trace_config = trace_config
        return self._trace_config

    def client_session(self, **kwargs) -> aiohttp.ClientSession:
        """Create an aiohttp session whose responses are observed."""
        self.bind_loop()
        trace_configs = list(kwargs.pop("trace_configs", None) or [])
        trace_configs.append(self.trace_config)
        return aiohttp.ClientSession(trace_configs=trace_configs, **kwargs)

    def install_requests(self, http: requests.Session) -> None:
        """Attach the response hook to a requests session (idempotent)."""
        self.bind_loop()
        if id(http) in self._hooked_sessions:
            return
        http.hooks.setdefault("response", []).append(self._on_requests_response)
        self._hooked_sessions.add(id(http))
        logger.debug("Interceptor installed on requests session")

    # =========================================================================
    # Adapters
    # =========================================================================

    async def _on_aiohttp_request_end(self, session, trace_config_ctx, params) -> None:
        if INTERNAL_REQUEST_HEADER in params.headers:
            return
        kind = classify(params.url)
        if kind is None:
            return

        url, method, status = str(params.url), params.method, params.response.status
        if kind is RequestKind.SEARCH:
            self.observe(ObservedResponse(url, method, status), kind)
            return

        # The body is classified once the caller has read it
        params.response.content = ObservedStream(
            params.response.content,
            lambda body: self.observe(ObservedResponse(url, method, status, body), kind),
        )

    def _on_requests_response(self, response: requests.Response, *args, **kwargs) -> None:
        request = response.request
        if request is not None and INTERNAL_REQUEST_HEADER in request.headers:
            return None
        url = request.url if request is not None else response.url
        kind = classify(url)
        if kind is None:
            return None

        observed = ObservedResponse(
            url=url,
            method=request.method if request is not None else "GET",
            status=response.status_code,
            body=response.content if kind is not RequestKind.SEARCH else None,
        )

        loop = self._loop
        if loop is None or loop.is_closed():
            logger.warning(f"Interceptor has no running page loop, dropping {kind.value} for {url}")
            return None
        # requests may run on a worker thread; hand off to the page loop
        loop.call_soon_threadsafe(self.observe, observed, kind)
        return None

    # =========================================================================
    # Dispatch
    # =========================================================================

    def observe(self, observed: ObservedResponse, kind: RequestKind) -> None:
        """Entry point shared by both adapters. Runs on the page loop."""
        if self._closed:
            return
        if kind is RequestKind.SEARCH:
            term = search_term_from_url(observed.url)
            if term:
                self._schedule_search(term)
            return

        if observed.status >= 400:
            logger.debug(f"Ignoring failed {kind.value} request ({observed.status}) {observed.url}")
            return

        if kind is RequestKind.CART_ADD:
            self._spawn(self._handle_cart_add(observed))
        elif kind is RequestKind.CART_CHANGE:
            self._spawn(self._handle_cart_change(observed))

    def _spawn(self, coro) -> asyncio.Task:
        task = self._loop.create_task(coro) if self._loop else asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Interceptor dispatch failed: {task.exception()}", exc_info=task.exception())

    async def _handle_cart_add(self, observed: ObservedResponse) -> None:
        try:
            data = observed.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Malformed cart add response from {observed.url}: {e}")
            data = None

        try:
            if isinstance(data, dict) and isinstance(data.get("items"), list):
                lines = [line for line in data["items"] if isinstance(line, dict)]
            elif isinstance(data, dict):
                lines = [data]
            else:
                lines = []

            for line in lines:
                item = CartItem.from_cart_json(line)
                await self.normalizer.emit("add_to_cart", RawEventPayload(items=[item]))
        except Exception as e:
            logger.error(f"Failed to track cart add: {e}", exc_info=True)

        await self.cart_tracker.refresh()

    async def _handle_cart_change(self, observed: ObservedResponse) -> None:
        try:
            data = observed.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Malformed cart change response from {observed.url}: {e}")
            await self.cart_tracker.refresh()
            return

        if not isinstance(data, dict) or not isinstance(data.get("items"), list):
            # Never diff against a cart we could not read: it would look empty
            logger.warning(f"Cart change response from {observed.url} has no items list")
            await self.cart_tracker.refresh()
            return

        try:
            old_cart = self.context.cart
            new_cart = Cart.from_cart_json(data, currency=self.context.currency)
            for delta in CartStateTracker.diff(old_cart, new_cart):
                await self.normalizer.emit(
                    delta.event_name,
                    RawEventPayload(items=[delta.item.with_quantity(delta.quantity)]),
                )
        except Exception as e:
            logger.error(f"Failed to track cart change: {e}", exc_info=True)

        await self.cart_tracker.refresh()

    # =========================================================================
    # Debounced search
    # =========================================================================

    def _schedule_search(self, term: str) -> None:
        self._pending_search_term = term
        if self._search_timer is not None:
            self._search_timer.cancel()
        loop = self._loop or asyncio.get_running_loop()
        self._search_timer = loop.call_later(self.config.search_debounce_seconds, self._fire_search)

    def _fire_search(self) -> None:
        self._search_timer = None
        term, self._pending_search_term = self._pending_search_term, None
        if term:
            self._spawn(self._run_search(term))

    async def _run_search(self, term: str) -> None:
        items = []
        if self.storefront is not None:
            try:
                suggestions = await self.storefront.search_suggest(term, self.config.search_suggest_limit)
            except Exception as e:
                logger.warning(f"Search suggest failed for '{term}': {e}")
                suggestions = []

            urls = []
            for suggestion in suggestions if isinstance(suggestions, list) else []:
                if not isinstance(suggestion, dict) or not (suggestion.get("url") or suggestion.get("handle")):
                    logger.warning(f"Skipping unusable search suggestion for '{term}': {suggestion!r}")
                    continue
                urls.append(suggestion.get("url") or f"/products/{suggestion['handle']}")

            products = await asyncio.gather(
                *(self.storefront.get_product(url) for url in urls),
                return_exceptions=True,
            )
            for url, product in zip(urls, products):
                if isinstance(product, BaseException):
                    logger.warning(f"Product detail fetch failed for {url}: {product}")
                    continue
                if not isinstance(product, dict):
                    logger.warning(f"Product detail for {url} is not an object, skipping")
                    continue
                try:
                    items.append(CartItem.from_product_json(product))
                except (TypeError, ValueError) as e:
                    logger.warning(f"Unreadable product detail for {url}: {e}")

        try:
            await self.normalizer.emit("search", RawEventPayload(search_term=term, items=items))
        except Exception as e:
            logger.error(f"Failed to track search '{term}': {e}", exc_info=True)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def search_pending(self) -> bool:
        return self._search_timer is not None

    async def drain(self) -> None:
        """Wait until no debounce timer or dispatch task is outstanding."""
        await asyncio.sleep(0)
        while True:
            if self._search_timer is not None:
                await asyncio.sleep(min(self.config.search_debounce_seconds, 0.05))
                continue
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        """Cancel outstanding work; nothing observed afterwards is tracked."""
        if self._search_timer is not None:
            self._search_timer.cancel()
            self._search_timer = None
        self._closed = True
        self._pending_search_term = None
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._loop = None
