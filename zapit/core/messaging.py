"""
Messaging - Requests to the coordinator and pushes into pages.

Pages talk to the coordinator with ``{"action": ..., ...}`` requests
and get a plain dict back. The coordinator pushes ``applyRules``,
``removeRuleFromDOM`` and ``toggleEditMode`` into pages through a
PageChannel; a page whose agent is not attached yet is a soft failure
that a RetryPolicy retries a bounded number of times.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, TYPE_CHECKING
import asyncio
import logging

from zapit.core.errors import PageNotReadyError, ZapItError
from zapit.core.rule import Rule, hostname_of
from zapit.layers.sense.selector_codec import check_selector

if TYPE_CHECKING:
    from zapit.store.rule_repository import RuleRepository

logger = logging.getLogger(__name__)

Message = Dict[str, Any]
Response = Dict[str, Any]


class MessageAction(str, Enum):
    # Requests handled by the coordinator
    SAVE_RULE = "saveRule"
    GET_RULES = "getRules"
    DELETE_RULE = "deleteRule"
    CLEAR_RULES = "clearRules"
    GET_EDIT_MODE = "getEditMode"
    SET_EDIT_MODE = "setEditMode"
    # Pushes handled by a page agent
    APPLY_RULES = "applyRules"
    REMOVE_RULE_FROM_DOM = "removeRuleFromDOM"
    TOGGLE_EDIT_MODE = "toggleEditMode"
    REAPPLY_RULES = "reapplyRules"


@dataclass
class Sender:
    """Origin of a request: the page's URL and channel id."""
    url: Optional[str] = None
    page_id: Optional[str] = None


class Coordinator:
    """
    Extension-wide request handler over the rule repository.

    Storage failures on mutating requests come back as
    ``{"error": message}``; ``getRules`` degrades to an empty list.
    """

    def __init__(self, repository: "RuleRepository"):
        self.repository = repository

    async def handle_message(self, message: Message, sender: Sender) -> Response:
        action = message.get("action")
        try:
            if action == MessageAction.SAVE_RULE:
                rule = await self.save_rule(message["rule"], _require_url(sender.url))
                return {"success": True, "rule": rule.to_dict()}

            if action == MessageAction.GET_RULES:
                url = message.get("url") or sender.url or ""
                rules = await self.repository.list(hostname_of(url))
                return {"rules": [rule.to_dict() for rule in rules]}

            if action == MessageAction.DELETE_RULE:
                url = _require_url(message.get("url") or sender.url)
                removed = await self.repository.remove_by_id(hostname_of(url), message["ruleId"])
                return {"success": True, "removed": removed}

            if action == MessageAction.CLEAR_RULES:
                url = _require_url(message.get("url") or sender.url)
                await self.repository.clear(hostname_of(url))
                return {"success": True}

            if action == MessageAction.GET_EDIT_MODE:
                return {"editMode": await self.repository.get_edit_mode()}

            if action == MessageAction.SET_EDIT_MODE:
                await self.repository.set_edit_mode(bool(message.get("enabled")))
                return {"success": True}

            return {"error": "Unrecognized action"}

        except (ZapItError, KeyError) as e:
            logger.error(f"[Coordinator] Error in handle_message ({action}): {e}")
            return {"error": str(e)}

    async def save_rule(self, rule_data: Message, tab_url: str) -> Rule:
        """
        Stamp id, creation time and URL onto a rule and persist it.

        The selector is stored in a form the selector engine accepts;
        one that cannot be repaired raises InvalidSelectorError.
        """
        rule = Rule.from_dict(rule_data).stamped(tab_url)
        rule.selector = check_selector(rule.selector)
        return await self.repository.add(hostname_of(tab_url), rule)


def _require_url(url: Optional[str]) -> str:
    if not url or not hostname_of(url):
        raise ZapItError(f"Request has no usable page URL: {url!r}")
    return url


# ---------------------------------------------------------------------------
# Push delivery
# ---------------------------------------------------------------------------

PageHandler = Callable[[Message], Awaitable[Response]]


class PageChannel:
    """
    Routes pushes to page agents by page id.

    ``send`` raises PageNotReadyError when no agent is attached; callers
    that want to wait for one go through ``deliver``.
    """

    def __init__(self):
        self._pages: Dict[str, PageHandler] = {}
        self._urls: Dict[str, str] = {}

    def attach(self, page_id: str, url: str, handler: PageHandler) -> None:
        self._pages[page_id] = handler
        self._urls[page_id] = url

    def detach(self, page_id: str) -> None:
        self._pages.pop(page_id, None)
        self._urls.pop(page_id, None)

    def is_attached(self, page_id: str) -> bool:
        return page_id in self._pages

    def pages_for_host(self, hostname: str) -> List[str]:
        return [page_id for page_id, url in self._urls.items() if hostname_of(url) == hostname]

    async def send(self, page_id: str, message: Message) -> Response:
        handler = self._pages.get(page_id)
        if handler is None:
            raise PageNotReadyError(f"No page agent attached for {page_id}")
        return await handler(message)

    async def deliver(
        self,
        page_id: str,
        message: Message,
        policy: Optional["RetryPolicy"] = None,
    ) -> "DeliveryResult":
        policy = policy or RetryPolicy()
        return await policy.run(lambda: self.send(page_id, message))


class DeliveryOutcome(str, Enum):
    DELIVERED = "delivered"
    EXHAUSTED = "exhausted"


@dataclass
class DeliveryResult:
    outcome: DeliveryOutcome
    attempts: int
    response: Optional[Response] = None

    @property
    def delivered(self) -> bool:
        return self.outcome is DeliveryOutcome.DELIVERED


@dataclass
class RetryPolicy:
    """
    Bounded retry for pushes into pages that are not ready yet.

    Only PageNotReadyError is retried; anything else propagates.
    The wait between attempts starts at ``interval`` seconds and is
    multiplied by ``backoff`` after each miss.
    """
    attempts: int = 3
    interval: float = 1.0
    backoff: float = 1.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    async def run(self, send: Callable[[], Awaitable[Response]]) -> DeliveryResult:
        delay = self.interval
        for attempt in range(1, self.attempts + 1):
            try:
                response = await send()
                return DeliveryResult(DeliveryOutcome.DELIVERED, attempt, response)
            except PageNotReadyError as e:
                logger.debug(f"[RetryPolicy] Page not ready (attempt {attempt}/{self.attempts}): {e}")
                if attempt < self.attempts:
                    await self.sleep(delay)
                    delay *= self.backoff
        return DeliveryResult(DeliveryOutcome.EXHAUSTED, self.attempts)
