"""
Live Session - A browser window with rules applied on every visit.

Glues the driver factory, the LiveDocument and the orchestrator: each
navigation attaches a fresh page agent and fires the page-load trigger.
"""

from typing import Optional
import logging

from zapit.core.driver_factory import WebDriverType, create_driver, wait_for_page_load
from zapit.core.messaging import DeliveryResult
from zapit.core.orchestrator import ApplyOrchestrator, ZapItConfig
from zapit.layers.action.page_agent import PageAgent
from zapit.layers.sense.live_document import LiveDocument

logger = logging.getLogger(__name__)


class LiveSession:
    """
    Opens pages in Chrome and keeps their rules applied.

    Example:
        >>> async with LiveSession(config) as session:
        ...     await session.visit("https://example.com/news")
    """

    def __init__(
        self,
        config: Optional[ZapItConfig] = None,
        orchestrator: Optional[ApplyOrchestrator] = None,
        driver: Optional[WebDriverType] = None,
    ):
        self.config = config or ZapItConfig()
        self.orchestrator = orchestrator or ApplyOrchestrator(config=self.config)
        self._driver = driver
        self._owns_driver = driver is None
        self.page_id: Optional[str] = None

    @property
    def driver(self) -> WebDriverType:
        if self._driver is None:
            self._driver = create_driver(
                headless=self.config.headless,
                page_load_timeout=self.config.page_load_timeout,
            )
        return self._driver

    @property
    def agent(self) -> Optional[PageAgent]:
        if self.page_id is None:
            return None
        return self.orchestrator.agents.get(self.page_id)

    async def visit(self, url: str) -> Optional[DeliveryResult]:
        """Navigate to ``url`` and apply the stored rules for its hostname."""
        if self.page_id is not None:
            self.orchestrator.detach_page(self.page_id)
            self.page_id = None

        self.driver.get(url)
        if not wait_for_page_load(self.driver, self.config.page_load_timeout):
            logger.warning(f"[LiveSession] Page did not finish loading: {url}")

        document = LiveDocument(self.driver)
        self.page_id = self.orchestrator.attach_page(document, document.url)
        return await self.orchestrator.on_page_load_complete(self.page_id)

    def close(self) -> None:
        if self.page_id is not None:
            self.orchestrator.detach_page(self.page_id)
            self.page_id = None
        if self._driver is not None and self._owns_driver:
            self._driver.quit()
        self._driver = None

    async def __aenter__(self) -> "LiveSession":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
