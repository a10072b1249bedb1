"""
Selector Codec - Stable selectors for picked elements.

Synthesizes a re-playable CSS selector for an arbitrary element and
repairs stored selectors that the selector engine refuses to parse
(typically utility-class names with ``:``, ``[`` or ``#`` in them).
"""

from typing import List
import logging
import re

import soupsieve as sv
from soupsieve import SelectorSyntaxError

from zapit.core.errors import InvalidSelectorError
from zapit.layers.sense.document import Document, Element

logger = logging.getLogger(__name__)

UI_PREFIX = "zapit-"

# Classes carried by the picker's own overlay, menu and style panel.
OWN_UI_CLASSES = (
    "zapit-selector-overlay",
    "zapit-context-menu",
    "zapit-style-panel",
)

_UNESCAPED_COLON = re.compile(r"(?<!\\):")


def css_escape(ident: str) -> str:
    """
    Serialize an identifier the way ``CSS.escape`` does.

    Example:
        >>> css_escape("hover:bg-[#fff]")
        'hover\\\\:bg-\\\\[\\\\#fff\\\\]'
    """
    return sv.escape(ident)


def _escape_segment(segment: str) -> str:
    """Escape one class segment, keeping any escapes already present."""
    out = []
    pieces = re.split(r"(\\.)", segment)
    for position, piece in enumerate(pieces):
        if not piece:
            continue
        if piece.startswith("\\") and len(piece) == 2:
            out.append(piece)
        elif position == 0:
            out.append(css_escape(piece))
        else:
            # Leading-digit rules only apply at the start of the identifier.
            out.append(css_escape("a" + piece)[1:])
    return "".join(out)


def is_own_ui(element: Element) -> bool:
    """True for the picker's own widgets and for elements being edited inline."""
    if (element.get_attribute("contenteditable") or "").lower() == "true":
        return True
    current = element
    while current is not None:
        if any(current.has_class(name) for name in OWN_UI_CLASSES):
            return True
        current = current.parent
    return False


def synthesize(element: Element, ui_prefix: str = UI_PREFIX) -> str:
    """
    Build a selector that re-locates ``element`` on a future load.

    Priority: ``#id``, then ``tag.class1.class2`` (own-UI classes
    dropped), then a ``>``-joined tag path up to the body, anchored at
    the first ancestor with an id and disambiguated by
    ``:nth-of-type(n)`` among same-tag siblings.

    Class selectors intentionally match every element sharing the same
    classes, so one rule can target a repeated pattern.
    """
    if element.element_id:
        return f"#{css_escape(element.element_id)}"

    classes = [name for name in element.classes if not name.startswith(ui_prefix)]
    if classes:
        return element.tag_name + "".join(f".{css_escape(name)}" for name in classes)

    path: List[str] = []
    current = element
    while current is not None and not current.is_body:
        step = current.tag_name
        if current.element_id:
            path.insert(0, f"{step}#{css_escape(current.element_id)}")
            break
        parent = current.parent
        if parent is not None:
            same_tag = [child for child in parent.children if child.tag_name == step]
            if len(same_tag) > 1:
                position = same_tag.index(current) + 1
                step += f":nth-of-type({position})"
        path.insert(0, step)
        current = parent
    return " > ".join(path)


def escape_selector(selector: str) -> str:
    """
    Rebuild a rejected selector by escaping each class segment on its own.

    Whitespace-separated compound groups are split on ``.``; the leading
    tag/id part of each group and every combinator pass through. With no
    ``.`` anywhere, unescaped colons are escaped instead.
    """
    if "." not in selector:
        return _UNESCAPED_COLON.sub(r"\\:", selector)

    groups = []
    for group in selector.split(" "):
        if "." not in group:
            groups.append(group)
            continue
        head, *segments = re.split(r"(?<!\\)\.", group)
        groups.append(head + "".join(f".{_escape_segment(s)}" for s in segments if s))
    return " ".join(groups)


def validate_or_escape(document: Document, selector: str) -> str:
    """
    Return a selector the document's selector engine accepts.

    Tries ``selector`` as-is first; on rejection returns the escaped
    rebuild. The rebuild is not re-validated here; querying it may
    still raise InvalidSelectorError.
    """
    try:
        document.select(selector)
        return selector
    except InvalidSelectorError as e:
        escaped = escape_selector(selector)
        logger.debug(f"[SelectorCodec] Escaped {selector!r} -> {escaped!r} ({e.reason})")
        return escaped


def check_selector(selector: str) -> str:
    """
    Return a storable form of ``selector`` without a page to test it on.

    Compiles with soupsieve; on rejection tries the escaped rebuild.

    Raises:
        InvalidSelectorError: if neither form compiles
    """
    if not isinstance(selector, str) or not selector.strip():
        raise InvalidSelectorError(str(selector), "empty selector")
    try:
        sv.compile(selector)
        return selector
    except (SelectorSyntaxError, NotImplementedError):
        pass

    escaped = escape_selector(selector)
    try:
        sv.compile(escaped)
    except (SelectorSyntaxError, NotImplementedError) as e:
        raise InvalidSelectorError(selector, str(e).splitlines()[0]) from e
    logger.debug(f"[SelectorCodec] Stored {selector!r} as {escaped!r}")
    return escaped


def query(document: Document, selector: str) -> List[Element]:
    """Validate/escape ``selector`` and return every matching element."""
    return document.select(validate_or_escape(document, selector))
