"""
Page Agent - The engine's presence inside one loaded page.

Handles pushes from the coordinator (apply, revert one rule, toggle
edit mode) and gives the picking UI its entry points: synthesize a
selector, remove/restyle/retext an element, save the resulting rule.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol
import logging

from zapit.core.errors import InvalidRuleError, ZapItError
from zapit.core.messaging import Message, MessageAction, Response
from zapit.core.rule import Rule, RuleAction
from zapit.layers.action.rule_engine import ApplyReport, RuleEngine
from zapit.layers.sense.document import Document, Element
from zapit.layers.sense.selector_codec import is_own_ui, synthesize, validate_or_escape

logger = logging.getLogger(__name__)

SELECTION_MODE_CLASS = "zapit-selection-mode"

Runtime = Callable[[Message], Awaitable[Response]]


class PickerUI(Protocol):
    """The picking UI collaborator: hover highlight, menus, style form."""

    def subscribe(self, agent: "PageAgent") -> Callable[[], None]:
        """Start delivering picks to ``agent``; return the unsubscribe hook."""


@dataclass
class EditModeSubscription:
    """
    Page-wide pick listening for the lifetime of one edit-mode session.

    Created when edit mode turns on, closed when it turns off. Closing
    twice is harmless.
    """
    agent: "PageAgent"
    picker: Optional[PickerUI] = None
    active: bool = field(default=False, init=False)
    _unsubscribe: Optional[Callable[[], None]] = field(default=None, init=False, repr=False)

    def open(self) -> "EditModeSubscription":
        if self.active:
            return self
        if self.picker is not None:
            self._unsubscribe = self.picker.subscribe(self.agent)
        self.agent._set_selection_mode(True)
        self.active = True
        return self

    def close(self) -> None:
        if not self.active:
            return
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.agent._set_selection_mode(False)
        self.active = False

    def __enter__(self) -> "EditModeSubscription":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class PageAgent:
    """
    One agent per loaded page.

    Example:
        >>> agent = PageAgent(document, runtime=coordinator_send)
        >>> await agent.handle_message({"action": "applyRules", "rules": [...]})
        >>> selector = agent.synthesize(element)
        >>> await agent.remove_element(element, selector)
    """

    def __init__(
        self,
        document: Document,
        runtime: Optional[Runtime] = None,
        picker: Optional[PickerUI] = None,
        engine: Optional[RuleEngine] = None,
    ):
        """
        Initialize the page agent.

        Args:
            document: The page this agent lives in
            runtime: Sends a request to the coordinator, returns its response
            picker: Optional picking UI to subscribe while in edit mode
            engine: Rule engine for ``document`` (created if omitted)
        """
        self.document = document
        self.runtime = runtime
        self.picker = picker
        self.engine = engine or RuleEngine(document)
        self.applied_rules: List[Rule] = []
        self.last_report: Optional[ApplyReport] = None
        self._edit_session: Optional[EditModeSubscription] = None

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Restore edit mode and apply the stored rules for this page."""
        response = await self._request({"action": MessageAction.GET_EDIT_MODE.value})
        if response.get("editMode"):
            self.enable_edit_mode()
        await self.load_and_apply_rules()

    async def load_and_apply_rules(self) -> Optional[ApplyReport]:
        response = await self._request({"action": MessageAction.GET_RULES.value})
        if "rules" not in response:
            return None
        return self.apply_rules(response["rules"])

    # ------------------------------------------------------------------
    # Pushes from the coordinator
    # ------------------------------------------------------------------

    async def handle_message(self, message: Message) -> Response:
        action = message.get("action")
        if action == MessageAction.TOGGLE_EDIT_MODE:
            if message.get("enabled"):
                self.enable_edit_mode()
            else:
                self.disable_edit_mode()

        elif action == MessageAction.REAPPLY_RULES:
            await self.load_and_apply_rules()

        elif action == MessageAction.REMOVE_RULE_FROM_DOM:
            self.remove_rule(message.get("rule") or {})

        elif action == MessageAction.APPLY_RULES:
            self.apply_rules(message.get("rules") or [])

        else:
            logger.debug(f"[PageAgent] Ignoring unknown push: {action}")

        return {"success": True}

    def remove_rule(self, record: Dict[str, Any]) -> None:
        """
        Revert one rule, then re-run the rules still in effect.

        Reverting restores an element's whole snapshot, which can undo
        other rules sharing that element; the follow-up pass puts them
        back.
        """
        parsed = _parse_rules([record])
        if not parsed:
            return
        rule = parsed[0]
        self.engine.revert_one(rule)
        remaining = [r for r in self.applied_rules if r.id != rule.id]
        if remaining:
            self.last_report = self.engine.apply_all(remaining)
        self.applied_rules = remaining

    def apply_rules(self, records: List[Dict[str, Any]]) -> ApplyReport:
        rules = _parse_rules(records)
        self.last_report = self.engine.apply_all(rules)
        self.applied_rules = rules
        return self.last_report

    # ------------------------------------------------------------------
    # Edit mode
    # ------------------------------------------------------------------

    @property
    def is_edit_mode(self) -> bool:
        return self._edit_session is not None and self._edit_session.active

    def enable_edit_mode(self) -> None:
        if self.is_edit_mode:
            return
        self._edit_session = EditModeSubscription(agent=self, picker=self.picker).open()
        logger.info("[PageAgent] Edit mode enabled")

    def disable_edit_mode(self) -> None:
        if self._edit_session is None:
            return
        self._edit_session.close()
        self._edit_session = None
        logger.info("[PageAgent] Edit mode disabled")

    def _set_selection_mode(self, enabled: bool) -> None:
        for body in self.document.select("body"):
            if enabled:
                body.add_class(SELECTION_MODE_CLASS)
            else:
                body.remove_class(SELECTION_MODE_CLASS)

    # ------------------------------------------------------------------
    # Picking UI entry points
    # ------------------------------------------------------------------

    def can_pick(self, element: Element) -> bool:
        return self.is_edit_mode and not is_own_ui(element)

    def synthesize(self, element: Element) -> str:
        return synthesize(element)

    async def remove_element(self, element: Element, selector: str) -> Response:
        """Hide ``element`` now and persist a ``remove`` rule for ``selector``."""
        self.engine.remove_element(element)
        return await self.save_rule(Rule(selector=selector, action=RuleAction.REMOVE))

    async def style_element(self, element: Element, selector: str, styles: Dict[str, str]) -> Response:
        """Apply ``styles`` inline now and persist a ``style`` rule."""
        styles = {key: value for key, value in styles.items() if value}
        self.engine.style_element(element, styles)
        return await self.save_rule(Rule(selector=selector, action=RuleAction.STYLE, styles=styles))

    async def edit_text(self, element: Element, selector: str, new_markup: str) -> Optional[Response]:
        """
        Replace the element's markup now and persist an ``editText`` rule.

        Returns:
            The coordinator's response, or None when the markup is unchanged

        Raises:
            EmptyElementError: if the element has nothing to edit
        """
        original = element.inner_html
        if new_markup == original:
            return None
        self.engine.edit_text(element, new_markup)
        rule = Rule(
            selector=selector,
            action=RuleAction.EDIT_TEXT,
            original_text=original,
            new_text=new_markup,
        )
        return await self.save_rule(rule)

    async def save_rule(self, rule: Rule) -> Response:
        rule.selector = validate_or_escape(self.document, rule.selector)
        response = await self._request({"action": MessageAction.SAVE_RULE.value, "rule": rule.to_dict()})
        if response.get("success"):
            saved = response.get("rule")
            self.applied_rules.append(Rule.from_dict(saved) if saved else rule)
        else:
            logger.error(f"[PageAgent] Error saving rule {rule}: {response.get('error')}")
        return response

    async def _request(self, message: Message) -> Response:
        if self.runtime is None:
            raise ZapItError("Page agent has no coordinator runtime")
        return await self.runtime(message)


def _parse_rules(records: List[Dict[str, Any]]) -> List[Rule]:
    rules = []
    for record in records:
        try:
            rules.append(Rule.from_dict(record))
        except InvalidRuleError as e:
            logger.warning(f"[PageAgent] Skipping rule: {e}")
    return rules
