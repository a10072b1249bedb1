"""
Rule Engine - Apply and revert rules against a document.

Every apply pass starts from the clean baseline restored by the
SnapshotStore, so running the same rule set any number of times
converges to the same page state. Failures are contained per rule;
nothing raised by a selector or a DOM call escapes a batch.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
import logging
import time

from zapit.core.errors import EmptyElementError
from zapit.core.rule import Rule, RuleAction, css_property_name
from zapit.layers.action.snapshot_store import REMOVED_CLASS, SnapshotKind, SnapshotStore
from zapit.layers.sense.document import Document, Element
from zapit.layers.sense.selector_codec import query

logger = logging.getLogger(__name__)

STYLESHEET_ID = "zapit-styles"


@dataclass
class RuleOutcome:
    """Result of applying or reverting one rule."""
    rule: Rule
    matched: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule.id,
            "selector": self.rule.selector,
            "action": self.rule.action.value,
            "matched": self.matched,
            "error": self.error,
        }


@dataclass
class ApplyReport:
    """Result of a full apply or revert pass."""
    outcomes: List[RuleOutcome] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def failed(self) -> List[RuleOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.success]

    @property
    def matched(self) -> int:
        return sum(outcome.matched for outcome in self.outcomes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rules": len(self.outcomes),
            "matched": self.matched,
            "failed": len(self.failed),
            "duration_ms": self.duration_ms,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


class RuleEngine:
    """
    Applies rules to one document and reverts them exactly.

    ``remove`` rules hide elements with a marker class instead of
    deleting them, so reverting never has to rebuild a subtree.
    ``style`` and ``editText`` rules capture the element's original
    state before the first overwrite.

    Example:
        >>> engine = RuleEngine(SoupDocument.from_html(html))
        >>> report = engine.apply_all(rules)
        >>> engine.revert_one(rules[0])
    """

    def __init__(
        self,
        document: Document,
        snapshots: Optional[SnapshotStore] = None,
        removed_class: str = REMOVED_CLASS,
    ):
        """
        Initialize the engine.

        Args:
            document: Document to mutate
            snapshots: Side table for this document (created if omitted)
            removed_class: Marker class that hides removed elements
        """
        self.document = document
        self.removed_class = removed_class
        self.snapshots = snapshots or SnapshotStore(removed_class=removed_class)

    @property
    def removed_css(self) -> str:
        return f".{self.removed_class} {{ display: none !important; }}"

    def apply_all(self, rules: Iterable[Rule]) -> ApplyReport:
        """
        Reset the document to its baseline, then apply ``rules`` in order.

        A rule that fails (bad selector, DOM error) is logged and
        skipped; the rest of the batch still runs.
        """
        start_time = time.time()
        report = ApplyReport()

        try:
            self.document.install_stylesheet(STYLESHEET_ID, self.removed_css)
            self.snapshots.clear_all(self.document)
        except Exception as e:
            logger.error(f"[RuleEngine] Could not reset page baseline: {e}")

        for rule in rules:
            report.outcomes.append(self.apply_one(rule))

        report.duration_ms = (time.time() - start_time) * 1000
        if report.failed:
            logger.warning(
                f"[RuleEngine] Applied {len(report.outcomes)} rules, "
                f"{len(report.failed)} failed"
            )
        else:
            logger.info(f"[RuleEngine] Applied {len(report.outcomes)} rules to {report.matched} elements")
        return report

    def apply_one(self, rule: Rule) -> RuleOutcome:
        """Apply a single rule on top of the current state, without a reset."""
        outcome = RuleOutcome(rule=rule)
        try:
            elements = query(self.document, rule.selector)
            for element in elements:
                self._apply_to_element(rule, element)
            outcome.matched = len(elements)
        except Exception as e:
            outcome.error = str(e)
            logger.error(f"[RuleEngine] Failed to apply rule {rule.id} ({rule.selector}): {e}")
        return outcome

    def _apply_to_element(self, rule: Rule, element: Element) -> None:
        if rule.action is RuleAction.REMOVE:
            element.add_class(self.removed_class)

        elif rule.action is RuleAction.STYLE:
            self._set_styles(element, rule.styles)

        elif rule.action is RuleAction.EDIT_TEXT:
            if rule.new_text is not None and not self.snapshots.has_snapshot(element, SnapshotKind.TEXT):
                self.snapshots.capture_if_absent(element, SnapshotKind.TEXT)
                element.inner_html = rule.new_text

        else:
            raise ValueError(f"Unhandled rule action: {rule.action}")

    def _set_styles(self, element: Element, styles: Dict[str, str]) -> None:
        css_styles = {css_property_name(key): value for key, value in styles.items()}
        self.snapshots.capture_if_absent(element, SnapshotKind.STYLE, css_styles.keys())
        for name, value in css_styles.items():
            element.set_style(name, value)

    def revert_one(self, rule: Rule) -> RuleOutcome:
        """
        Undo one rule's effect on every element it matches.

        Style rules fall back to clearing just their own properties when
        no snapshot was ever taken for an element. An element whose
        snapshot was already restored is at its original state and is
        left alone.
        """
        outcome = RuleOutcome(rule=rule)
        try:
            elements = query(self.document, rule.selector)
            for element in elements:
                self._revert_element(rule, element)
            outcome.matched = len(elements)
        except Exception as e:
            outcome.error = str(e)
            logger.error(f"[RuleEngine] Failed to revert rule {rule.id} ({rule.selector}): {e}")
        return outcome

    def _revert_element(self, rule: Rule, element: Element) -> None:
        if rule.action is RuleAction.REMOVE:
            element.remove_class(self.removed_class)

        elif rule.action is RuleAction.STYLE:
            if self.snapshots.has_snapshot(element, SnapshotKind.STYLE):
                self.snapshots.restore(element, SnapshotKind.STYLE)
            elif not self.snapshots.ever_captured(element, SnapshotKind.STYLE):
                for key in rule.styles:
                    element.remove_style(css_property_name(key))

        elif rule.action is RuleAction.EDIT_TEXT:
            self.snapshots.restore(element, SnapshotKind.TEXT)

        else:
            raise ValueError(f"Unhandled rule action: {rule.action}")

    def revert_all(self) -> int:
        """Strip every applied effect from the document."""
        try:
            return self.snapshots.clear_all(self.document)
        except Exception as e:
            logger.error(f"[RuleEngine] Could not revert page: {e}")
            return 0

    # ------------------------------------------------------------------
    # Immediate effects for the picking UI
    # ------------------------------------------------------------------

    def remove_element(self, element: Element) -> None:
        """Hide a freshly picked element."""
        self.document.install_stylesheet(STYLESHEET_ID, self.removed_css)
        element.add_class(self.removed_class)

    def style_element(self, element: Element, styles: Dict[str, str]) -> None:
        """Restyle a freshly picked element, keeping its original values."""
        self._set_styles(element, styles)

    def edit_text(self, element: Element, new_markup: str) -> str:
        """
        Replace a picked element's markup.

        Returns:
            The markup the element had before the edit

        Raises:
            EmptyElementError: if the element has neither text nor markup
        """
        original = element.inner_html
        if not element.text.strip() and not original.strip():
            raise EmptyElementError(f"Element has no text to edit: {element!r}")
        self.snapshots.capture_if_absent(element, SnapshotKind.TEXT)
        element.inner_html = new_markup
        return original
