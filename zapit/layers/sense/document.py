"""
Document Model - The surface the rule engine mutates.

The engine never touches a DOM library directly. It talks to the
``Document``/``Element`` interface below, which has two backends:

- ``SoupDocument``: a parsed HTML page (BeautifulSoup + soupsieve),
  used for offline rendering and for tests.
- ``LiveDocument``: a page in a running browser, driven through
  Selenium (see ``live_document``).
"""

from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Dict, Hashable, List, Optional

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

from zapit.core.errors import InvalidSelectorError


class Element(ABC):
    """A live element handle exposed by a Document backend."""

    @property
    @abstractmethod
    def handle(self) -> Hashable:
        """Stable identity of the underlying node for this document load."""

    @property
    @abstractmethod
    def tag_name(self) -> str:
        """Lower-case tag name."""

    @property
    @abstractmethod
    def element_id(self) -> str:
        pass

    @property
    @abstractmethod
    def classes(self) -> List[str]:
        pass

    @property
    @abstractmethod
    def parent(self) -> Optional["Element"]:
        """Parent element, or None at the document root."""

    @property
    @abstractmethod
    def children(self) -> List["Element"]:
        """Element children in document order (text nodes excluded)."""

    @abstractmethod
    def get_attribute(self, name: str) -> Optional[str]:
        pass

    @abstractmethod
    def set_attribute(self, name: str, value: str) -> None:
        pass

    @abstractmethod
    def remove_attribute(self, name: str) -> None:
        pass

    @abstractmethod
    def add_class(self, name: str) -> None:
        pass

    @abstractmethod
    def remove_class(self, name: str) -> None:
        pass

    @abstractmethod
    def get_style(self, css_name: str) -> str:
        """Inline (not computed) value of a property, or '' when unset."""

    @abstractmethod
    def set_style(self, css_name: str, value: str) -> None:
        """Set an inline property. An empty value removes it."""

    @abstractmethod
    def remove_style(self, css_name: str) -> None:
        pass

    @property
    @abstractmethod
    def inner_html(self) -> str:
        pass

    @inner_html.setter
    @abstractmethod
    def inner_html(self, markup: str) -> None:
        pass

    @property
    @abstractmethod
    def text(self) -> str:
        pass

    @property
    def is_body(self) -> bool:
        return self.tag_name == "body"

    def has_class(self, name: str) -> bool:
        return name in self.classes

    def __eq__(self, other) -> bool:
        return isinstance(other, Element) and self.handle == other.handle

    def __hash__(self) -> int:
        return hash(self.handle)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {describe_element(self)}>"


class Document(ABC):
    """A page the rule engine can query and mutate."""

    @abstractmethod
    def select(self, selector: str) -> List[Element]:
        """
        Return every element matching a CSS selector.

        Raises:
            InvalidSelectorError: if the selector engine rejects the string.
        """

    @abstractmethod
    def install_stylesheet(self, style_id: str, css: str) -> None:
        """Add a <style> block once; later calls with the same id are no-ops."""


def describe_element(element: Element) -> str:
    """Short ``tag#id.class1.class2`` label for tooltips and CLI output."""
    label = element.tag_name
    if element.element_id:
        label += f"#{element.element_id}"
    if element.classes:
        label += "." + ".".join(element.classes)
    return label


# ---------------------------------------------------------------------------
# BeautifulSoup backend
# ---------------------------------------------------------------------------

def parse_inline_style(style: str) -> "OrderedDict[str, str]":
    """Split a style attribute into ordered ``property -> value`` pairs."""
    declarations: "OrderedDict[str, str]" = OrderedDict()
    for chunk in _split_declarations(style or ""):
        name, sep, value = chunk.partition(":")
        name = name.strip().lower()
        value = value.strip()
        if sep and name and value:
            declarations[name] = value
    return declarations


def _split_declarations(style: str) -> List[str]:
    # Semicolons inside url(...) or quoted strings do not end a declaration.
    chunks, current = [], []
    depth, quote = 0, ""
    for char in style:
        if quote:
            if char == quote:
                quote = ""
        elif char in "\"'":
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")" and depth:
            depth -= 1
        elif char == ";" and not depth:
            chunks.append("".join(current))
            current = []
            continue
        current.append(char)
    chunks.append("".join(current))
    return chunks


def serialize_inline_style(declarations: Dict[str, str]) -> str:
    return " ".join(f"{name}: {value};" for name, value in declarations.items())


class SoupElement(Element):
    """Element backed by a BeautifulSoup Tag."""

    def __init__(self, tag: Tag):
        self._tag = tag

    @property
    def tag(self) -> Tag:
        return self._tag

    @property
    def handle(self) -> Hashable:
        # Tag.__eq__/__hash__ are structural, so identity is the handle.
        return id(self._tag)

    @property
    def tag_name(self) -> str:
        return self._tag.name.lower()

    @property
    def element_id(self) -> str:
        return self._tag.get("id") or ""

    @property
    def classes(self) -> List[str]:
        value = self._tag.get("class")
        if not value:
            return []
        if isinstance(value, str):
            return value.split()
        return list(value)

    @property
    def parent(self) -> Optional[Element]:
        parent = self._tag.parent
        if parent is None or not isinstance(parent, Tag) or isinstance(parent, BeautifulSoup):
            return None
        return SoupElement(parent)

    @property
    def children(self) -> List[Element]:
        return [SoupElement(child) for child in self._tag.children if isinstance(child, Tag)]

    def get_attribute(self, name: str) -> Optional[str]:
        value = self._tag.get(name)
        if isinstance(value, list):
            return " ".join(value)
        return value

    def set_attribute(self, name: str, value: str) -> None:
        self._tag[name] = value

    def remove_attribute(self, name: str) -> None:
        if self._tag.has_attr(name):
            del self._tag[name]

    def add_class(self, name: str) -> None:
        classes = self.classes
        if name not in classes:
            classes.append(name)
            self._tag["class"] = classes

    def remove_class(self, name: str) -> None:
        classes = self.classes
        if name not in classes:
            return
        classes = [c for c in classes if c != name]
        if classes:
            self._tag["class"] = classes
        else:
            del self._tag["class"]

    def _write_style(self, declarations: Dict[str, str]) -> None:
        if declarations:
            self._tag["style"] = serialize_inline_style(declarations)
        elif self._tag.has_attr("style"):
            del self._tag["style"]

    def get_style(self, css_name: str) -> str:
        return parse_inline_style(self._tag.get("style", "")).get(css_name.lower(), "")

    def set_style(self, css_name: str, value: str) -> None:
        if not value:
            self.remove_style(css_name)
            return
        declarations = parse_inline_style(self._tag.get("style", ""))
        declarations[css_name.lower()] = value
        self._write_style(declarations)

    def remove_style(self, css_name: str) -> None:
        declarations = parse_inline_style(self._tag.get("style", ""))
        if declarations.pop(css_name.lower(), None) is not None:
            self._write_style(declarations)

    @property
    def inner_html(self) -> str:
        return self._tag.decode_contents()

    @inner_html.setter
    def inner_html(self, markup: str) -> None:
        fragment = BeautifulSoup(markup or "", "html.parser")
        self._tag.clear()
        for node in list(fragment.contents):
            self._tag.append(node.extract())

    @property
    def text(self) -> str:
        return self._tag.get_text()


class SoupDocument(Document):
    """
    A parsed HTML page.

    Example:
        >>> doc = SoupDocument.from_html("<body><p id='x'>hi</p></body>")
        >>> [describe_element(e) for e in doc.select("#x")]
        ['p#x']
    """

    def __init__(self, soup: BeautifulSoup):
        self.soup = soup

    @classmethod
    def from_html(cls, html: str) -> "SoupDocument":
        return cls(BeautifulSoup(html, "html.parser"))

    def select(self, selector: str) -> List[Element]:
        try:
            tags = self.soup.select(selector)
        except (SelectorSyntaxError, NotImplementedError) as e:
            raise InvalidSelectorError(selector, str(e).splitlines()[0]) from e
        return [SoupElement(tag) for tag in tags]

    def install_stylesheet(self, style_id: str, css: str) -> None:
        if self.soup.find("style", id=style_id) is not None:
            return
        style = self.soup.new_tag("style", id=style_id)
        style.string = css
        container = self.soup.head or self.soup.body or self.soup.find("html")
        if container is not None:
            container.append(style)
        else:
            self.soup.insert(0, style)

    def to_html(self) -> str:
        return str(self.soup)
