"""
Apply Orchestrator - Decides when rules are (re)applied.

Triggers:

1. PAGE LOAD: a page finished loading; fetch its hostname's rules and
   push ``applyRules`` with a bounded retry while its agent attaches.

2. RULE SET CHANGED: a rule was saved or the partition cleared; push
   the fresh rule set to every attached page on that hostname.

3. SINGLE-RULE DELETE: push ``removeRuleFromDOM`` for the deleted rule
   to every attached page on that hostname.

Every full push goes through ``RuleEngine.apply_all``, which resets the
page to its baseline first, so overlapping triggers are safe to
interleave: the last pass to run wins.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional
import logging
import os
import uuid

from zapit.core.messaging import (
    Coordinator,
    DeliveryOutcome,
    DeliveryResult,
    Message,
    MessageAction,
    PageChannel,
    Response,
    RetryPolicy,
    Sender,
)
from zapit.core.rule import hostname_of
from zapit.layers.action.page_agent import PageAgent, PickerUI
from zapit.layers.sense.document import Document
from zapit.store.rule_repository import JsonStorage, RuleRepository

logger = logging.getLogger(__name__)


@dataclass
class ZapItConfig:
    """Configuration for the orchestrator and CLI."""
    storage_path: str = "~/.zapit/storage.json"
    delivery_attempts: int = 3
    delivery_interval: float = 1.0  # seconds between push attempts
    delivery_backoff: float = 1.0
    headless: bool = False
    page_load_timeout: int = 30

    @classmethod
    def from_env(cls) -> "ZapItConfig":
        """Build a config from ``ZAPIT_*`` environment variables."""
        config = cls()
        config.storage_path = os.environ.get("ZAPIT_STORAGE", config.storage_path)
        config.delivery_attempts = int(os.environ.get("ZAPIT_DELIVERY_ATTEMPTS", config.delivery_attempts))
        config.delivery_interval = float(os.environ.get("ZAPIT_DELIVERY_INTERVAL", config.delivery_interval))
        config.delivery_backoff = float(os.environ.get("ZAPIT_DELIVERY_BACKOFF", config.delivery_backoff))
        config.headless = os.environ.get("ZAPIT_HEADLESS", "").lower() in ("1", "true", "yes")
        config.page_load_timeout = int(os.environ.get("ZAPIT_PAGE_LOAD_TIMEOUT", config.page_load_timeout))
        return config

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            attempts=self.delivery_attempts,
            interval=self.delivery_interval,
            backoff=self.delivery_backoff,
        )


class ApplyOrchestrator:
    """
    Owns the coordinator, the page channel and every attached page agent.

    Example:
        >>> orchestrator = ApplyOrchestrator(config=ZapItConfig.from_env())
        >>> page_id = orchestrator.attach_page(document, url)
        >>> await orchestrator.on_page_load_complete(page_id)
    """

    def __init__(
        self,
        repository: Optional[RuleRepository] = None,
        config: Optional[ZapItConfig] = None,
        channel: Optional[PageChannel] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.config = config or ZapItConfig()
        self.repository = repository or RuleRepository(JsonStorage(self.config.storage_path))
        self.coordinator = Coordinator(self.repository)
        self.channel = channel or PageChannel()
        self.retry_policy = retry_policy or self.config.retry_policy()
        self.agents: Dict[str, PageAgent] = {}
        self._urls: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Page lifecycle
    # ------------------------------------------------------------------

    def attach_page(
        self,
        document: Document,
        url: str,
        page_id: Optional[str] = None,
        picker: Optional[PickerUI] = None,
    ) -> str:
        """Create the page's agent and connect it to the channel."""
        page_id = page_id or uuid.uuid4().hex[:12]
        self._urls[page_id] = url
        sender = Sender(url=url, page_id=page_id)

        async def runtime(message: Message) -> Response:
            return await self.coordinator.handle_message(message, sender)

        agent = PageAgent(document, runtime=runtime, picker=picker)
        self.agents[page_id] = agent
        self.channel.attach(page_id, url, agent.handle_message)
        logger.info(f"[ApplyOrchestrator] Page {page_id} attached: {url}")
        return page_id

    def detach_page(self, page_id: str) -> None:
        agent = self.agents.pop(page_id, None)
        if agent is not None:
            agent.disable_edit_mode()
        self._urls.pop(page_id, None)
        self.channel.detach(page_id)

    async def start_page(self, page_id: str) -> None:
        """Let a freshly attached agent restore edit mode and apply rules itself."""
        await self.agents[page_id].start()

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    async def on_page_load_complete(self, page_id: str, url: Optional[str] = None) -> Optional[DeliveryResult]:
        """
        Push the hostname's rules into a page that finished loading.

        The page's agent may attach after this call starts; delivery is
        retried per the retry policy. Returns None when there is
        nothing to apply.
        """
        url = url or self._urls.get(page_id)
        if not url:
            logger.debug(f"[ApplyOrchestrator] No URL known for page {page_id}")
            return None

        rules = await self.repository.list(hostname_of(url))
        if not rules:
            return None

        message = {
            "action": MessageAction.APPLY_RULES.value,
            "rules": [rule.to_dict() for rule in rules],
        }
        result = await self.channel.deliver(page_id, message, self.retry_policy)
        if result.outcome is DeliveryOutcome.EXHAUSTED:
            logger.debug(f"[ApplyOrchestrator] Page agent not ready yet for: {url}")
        return result

    async def on_rules_changed(self, hostname: str) -> List[DeliveryResult]:
        """Re-apply the current rule set on every attached page of ``hostname``."""
        rules = await self.repository.list(hostname)
        message = {
            "action": MessageAction.APPLY_RULES.value,
            "rules": [rule.to_dict() for rule in rules],
        }
        return await self._broadcast(hostname, message)

    async def on_rule_deleted(self, hostname: str, rule: Dict) -> List[DeliveryResult]:
        """Revert one deleted rule on every attached page of ``hostname``."""
        message = {"action": MessageAction.REMOVE_RULE_FROM_DOM.value, "rule": rule}
        return await self._broadcast(hostname, message)

    async def _broadcast(self, hostname: str, message: Message) -> List[DeliveryResult]:
        results = []
        for page_id in self.channel.pages_for_host(hostname):
            results.append(await self.channel.deliver(page_id, message, self.retry_policy))
        return results

    # ------------------------------------------------------------------
    # Requests (popup, CLI, page agents)
    # ------------------------------------------------------------------

    async def handle_message(self, message: Message, sender: Optional[Sender] = None) -> Response:
        """
        Route a request through the coordinator and fire the matching trigger.

        ``deleteRule`` looks the rule up first so the pages can be told
        exactly what to revert.
        """
        sender = sender or Sender()
        action = message.get("action")
        url = message.get("url") or sender.url or ""
        hostname = hostname_of(url)

        deleted = None
        if action == MessageAction.DELETE_RULE and hostname:
            target = str(message.get("ruleId"))
            for rule in await self.repository.list(hostname):
                if rule.id == target:
                    deleted = rule.to_dict()
                    break

        response = await self.coordinator.handle_message(message, sender)
        if "error" in response:
            return response

        if action == MessageAction.SAVE_RULE and sender.page_id is None:
            await self.on_rules_changed(hostname)
        elif action == MessageAction.DELETE_RULE and deleted is not None:
            await self.on_rule_deleted(hostname, deleted)
        elif action == MessageAction.CLEAR_RULES:
            await self.on_rules_changed(hostname)
        elif action == MessageAction.SET_EDIT_MODE:
            await self.set_edit_mode_on_pages(bool(message.get("enabled")))
        return response

    async def set_edit_mode_on_pages(self, enabled: bool) -> List[DeliveryResult]:
        message = {"action": MessageAction.TOGGLE_EDIT_MODE.value, "enabled": enabled}
        results = []
        for page_id in list(self.agents):
            results.append(await self.channel.deliver(page_id, message, self.retry_policy))
        return results
