"""
Page runtime: builds one tracker per page load and tears it down on navigation.
"""

import logging
from typing import Optional

import aiohttp
import requests

from .cart_state import CartStateTracker
from .channel import EventChannel
from .config import TrackerConfig
from .context import TrackerContext, read_page_state
from .dom_binder import BinderConfig, DomEventBinder, PageDocument
from .interceptor import NetworkInterceptor
from .normalizer import EventNormalizer
from .pixel_events import PixelAnalytics, PixelSubscriber
from .storefront import StorefrontClient

logger = logging.getLogger(__name__)


class PageRuntime:
    """
    Everything the tracker needs for one page.

    Usage::

        async with PageRuntime(html, "https://shop.example.com") as page:
            async with page.session.post(page.storefront.url("/cart/add.js"), data=...) as resp:
                ...
            await page.drain()
            page.channel.events("add_to_cart")

    ``session`` plays the role of the page's ``fetch`` and ``http`` the role of
    its XHR; both are observed by the same interceptor.
    """

    def __init__(
        self,
        html: str,
        base_url: str,
        config: Optional[TrackerConfig] = None,
        binder_config: Optional[BinderConfig] = None,
        channel: Optional[EventChannel] = None,
    ):
        self.html = html
        self.base_url = base_url
        self.config = config or TrackerConfig()
        self.binder_config = binder_config
        self.channel = channel or EventChannel()

        self.context: Optional[TrackerContext] = None
        self.document: Optional[PageDocument] = None
        self.session: Optional[aiohttp.ClientSession] = None
        self.http: Optional[requests.Session] = None
        self.storefront: Optional[StorefrontClient] = None
        self.normalizer: Optional[EventNormalizer] = None
        self.cart_tracker: Optional[CartStateTracker] = None
        self.interceptor: Optional[NetworkInterceptor] = None
        self.binder: Optional[DomEventBinder] = None
        self.analytics: Optional[PixelAnalytics] = None

    async def start(self) -> "PageRuntime":
        """Wire the tracker. Must run inside the page's event loop."""
        page_state = read_page_state(self.html)
        self.context = TrackerContext.from_page_state(page_state)
        self.document = PageDocument(self.html)
        self.normalizer = EventNormalizer(self.channel, self.config, self.context)

        # The interceptor needs the storefront and the storefront needs the
        # interceptor's session, so the session is attached after construction
        self.interceptor = NetworkInterceptor(self.context, self.normalizer, None, None, self.config)
        self.session = self.interceptor.client_session()
        self.storefront = StorefrontClient(self.base_url, self.session)
        self.cart_tracker = CartStateTracker(self.context, self.storefront.get_cart)
        self.interceptor.storefront = self.storefront
        self.interceptor.cart_tracker = self.cart_tracker

        self.http = requests.Session()
        self.interceptor.install_requests(self.http)

        self.binder = DomEventBinder(self.context, self.normalizer, self.storefront, self.binder_config)
        self.binder.bind(self.document)

        self.analytics = PixelAnalytics()
        PixelSubscriber(self.normalizer).subscribe_all(self.analytics)

        logger.info(f"Tracker started for {page_state.shop or self.base_url} ({page_state.template or 'unknown template'})")
        return self

    async def drain(self) -> None:
        """Wait for pending debounce timers and dispatch tasks."""
        await self.interceptor.drain()

    async def close(self) -> None:
        """Navigation: cancel outstanding work and discard the context."""
        if self.interceptor is not None:
            await self.interceptor.close()
        if self.session is not None and not self.session.closed:
            await self.session.close()
        if self.http is not None:
            self.http.close()
        if self.context is not None:
            logger.debug(f"Tracker closed: {self.context.summary()}")
        self.context = None

    async def __aenter__(self) -> "PageRuntime":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
