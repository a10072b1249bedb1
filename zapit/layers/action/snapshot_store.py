"""
Snapshot Store - Pre-mutation state of live elements.

Snapshots live in a side table owned by one document load, so nothing
but a short lookup key is written onto the page. The key is stamped as
a ``data-zapit-key`` attribute when an element is first captured; it
travels inside any markup captured from an ancestor, so an element
recreated by restoring that markup is still found. Every load starts
with an empty table.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Optional, Set, Tuple
import logging

from zapit.layers.sense.document import Document, Element

logger = logging.getLogger(__name__)

REMOVED_CLASS = "zapit-removed"
KEY_ATTRIBUTE = "data-zapit-key"


class SnapshotKind(str, Enum):
    STYLE = "style"
    TEXT = "editText"


@dataclass
class _Snapshot:
    styles: Optional[Dict[str, str]] = None
    markup: Optional[str] = None

    @property
    def empty(self) -> bool:
        return self.styles is None and self.markup is None


def _key_selector(key: str) -> str:
    return f'[{KEY_ATTRIBUTE}="{key}"]'


def _write_back(element: Element, snapshot: _Snapshot, kind: SnapshotKind) -> bool:
    if kind is SnapshotKind.STYLE and snapshot.styles is not None:
        for name, value in snapshot.styles.items():
            element.set_style(name, value)
        snapshot.styles = None
        return True
    if kind is SnapshotKind.TEXT and snapshot.markup is not None:
        element.inner_html = snapshot.markup
        snapshot.markup = None
        return True
    return False


@dataclass
class SnapshotStore:
    """
    Side table of original element state for one document.

    Capture is first-write-wins per property: a second style rule on the
    same element never overwrites what the first one captured, so a
    restore always returns the true original.

    Example:
        >>> store = SnapshotStore()
        >>> store.capture_if_absent(el, SnapshotKind.STYLE, ["background-color"])
        >>> el.set_style("background-color", "#000")
        >>> store.restore(el, SnapshotKind.STYLE)
    """
    removed_class: str = REMOVED_CLASS
    _table: "OrderedDict[str, _Snapshot]" = field(default_factory=OrderedDict, repr=False, init=False)
    # (key, kind) pairs captured since the last clear_all.
    _captured: Set[Tuple[str, SnapshotKind]] = field(default_factory=set, repr=False, init=False)
    _next_key: int = field(default=0, repr=False, init=False)

    def __len__(self) -> int:
        return len(self._table)

    def _key_of(self, element: Element) -> Optional[str]:
        return element.get_attribute(KEY_ATTRIBUTE) or None

    def _stamp(self, element: Element) -> str:
        key = self._key_of(element)
        if key is None:
            self._next_key += 1
            key = str(self._next_key)
            element.set_attribute(KEY_ATTRIBUTE, key)
        return key

    def has_snapshot(self, element: Element, kind: SnapshotKind) -> bool:
        key = self._key_of(element)
        snapshot = self._table.get(key) if key else None
        if snapshot is None:
            return False
        if kind is SnapshotKind.STYLE:
            return snapshot.styles is not None
        return snapshot.markup is not None

    def ever_captured(self, element: Element, kind: SnapshotKind) -> bool:
        """True if this element had a snapshot of ``kind`` since the last clear_all."""
        key = self._key_of(element)
        return key is not None and (key, kind) in self._captured

    def capture_if_absent(
        self,
        element: Element,
        kind: SnapshotKind,
        properties: Iterable[str] = (),
    ) -> None:
        """
        Record the element's current state unless already recorded.

        Args:
            element: Element about to be mutated
            kind: Which state to capture
            properties: CSS property names about to change (STYLE only)
        """
        key = self._stamp(element)
        snapshot = self._table.get(key)
        if snapshot is None:
            snapshot = self._table[key] = _Snapshot()
        self._captured.add((key, kind))

        if kind is SnapshotKind.STYLE:
            if snapshot.styles is None:
                snapshot.styles = {}
            for name in properties:
                if name not in snapshot.styles:
                    snapshot.styles[name] = element.get_style(name)
        elif snapshot.markup is None:
            snapshot.markup = element.inner_html

    def restore(self, element: Element, kind: SnapshotKind) -> bool:
        """
        Write captured state back and drop it. No-op without a snapshot.

        Returns:
            True if something was restored
        """
        key = self._key_of(element)
        snapshot = self._table.get(key) if key else None
        if snapshot is None:
            return False

        restored = _write_back(element, snapshot, kind)
        if snapshot.empty:
            del self._table[key]
        return restored

    def clear_all(self, document: Document) -> int:
        """
        Return the document to its unmutated baseline.

        Restores every snapshot, newest first, re-finding each element by
        its key so nodes recreated by an earlier markup restore are
        reached. Then strips the removal marker class and the keys.

        Returns:
            Number of elements touched
        """
        touched = 0
        try:
            for key, snapshot in reversed(list(self._table.items())):
                try:
                    elements = document.select(_key_selector(key))
                    for element in elements:
                        _write_back(element, snapshot, SnapshotKind.STYLE)
                        _write_back(element, snapshot, SnapshotKind.TEXT)
                    if elements:
                        touched += 1
                    else:
                        logger.debug(f"[SnapshotStore] Element {key} no longer in the page")
                except Exception as e:
                    logger.warning(f"[SnapshotStore] Could not restore element {key}: {e}")
        finally:
            self._table.clear()
            self._captured.clear()
            self._next_key = 0

            for element in document.select(f".{self.removed_class}"):
                element.remove_class(self.removed_class)
                touched += 1
            for element in document.select(f"[{KEY_ATTRIBUTE}]"):
                element.remove_attribute(KEY_ATTRIBUTE)

        if touched:
            logger.debug(f"[SnapshotStore] Baseline restored on {touched} elements")
        return touched

    def forget(self, document: Document) -> None:
        """Drop every snapshot and key, keeping the page as it is now."""
        self._table.clear()
        self._captured.clear()
        self._next_key = 0
        for element in document.select(f"[{KEY_ATTRIBUTE}]"):
            element.remove_attribute(KEY_ATTRIBUTE)
