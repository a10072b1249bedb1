"""
Rule Model - Persisted page mutations.

A rule binds one mutation (remove, restyle, rewrite text) to a
selector. Rules are stored per hostname in creation order.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import urlparse
import re
import secrets
import time

from zapit.core.errors import InvalidRuleError, UnknownActionError


STORAGE_KEY_PREFIX = "rules_"


class RuleAction(str, Enum):
    """The closed set of mutations a rule can carry."""
    REMOVE = "remove"
    STYLE = "style"
    EDIT_TEXT = "editText"


class StyleProperty(str, Enum):
    """Style properties offered by the editing form."""
    BACKGROUND_COLOR = "backgroundColor"
    COLOR = "color"
    FONT_SIZE = "fontSize"
    BORDER = "border"
    PADDING = "padding"
    MARGIN = "margin"

    @property
    def css_name(self) -> str:
        return _CSS_NAMES[self]


_CSS_NAMES = {
    StyleProperty.BACKGROUND_COLOR: "background-color",
    StyleProperty.COLOR: "color",
    StyleProperty.FONT_SIZE: "font-size",
    StyleProperty.BORDER: "border",
    StyleProperty.PADDING: "padding",
    StyleProperty.MARGIN: "margin",
}

_CAMEL_BOUNDARY = re.compile(r"(?<!^)([A-Z])")


def css_property_name(key: str) -> str:
    """
    Map a style payload key to its CSS property name.

    Known editing-form keys dispatch through StyleProperty; any other
    camelCase key is converted generically (``borderRadius`` ->
    ``border-radius``). Keys already in CSS form pass through.
    """
    try:
        return StyleProperty(key).css_name
    except ValueError:
        pass
    if "-" in key:
        return key.lower()
    return _CAMEL_BOUNDARY.sub(r"-\1", key).lower()


def new_rule_id() -> str:
    """Millisecond timestamp plus random suffix; unique within a partition."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def hostname_of(url: str) -> str:
    """
    Return the partition key for a page URL.

    Bare hostnames (``example.com``) are accepted as-is so the CLI can
    address a partition without a full URL.
    """
    parsed = urlparse(url)
    if parsed.hostname:
        return parsed.hostname
    if "://" not in url:
        parsed = urlparse(f"//{url}")
        if parsed.hostname:
            return parsed.hostname
    return ""


def storage_key(hostname: str) -> str:
    return f"{STORAGE_KEY_PREFIX}{hostname}"


@dataclass
class Rule:
    """
    One persisted mutation.

    ``id``, ``created`` and ``url`` are stamped by the coordinator when
    the rule is saved; a rule fresh from the picking UI leaves them
    empty.
    """
    selector: str
    action: RuleAction
    styles: Dict[str, str] = field(default_factory=dict)
    original_text: Optional[str] = None
    new_text: Optional[str] = None
    id: Optional[str] = None
    created: Optional[str] = None
    url: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.action, RuleAction):
            self.action = parse_action(self.action)

    def stamped(self, url: str) -> "Rule":
        """Copy of this rule with a fresh id, creation time and source URL."""
        return Rule(
            selector=self.selector,
            action=self.action,
            styles=dict(self.styles),
            original_text=self.original_text,
            new_text=self.new_text,
            id=new_rule_id(),
            created=utc_timestamp(),
            url=url,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the stored record shape."""
        data: Dict[str, Any] = {
            "id": self.id,
            "selector": self.selector,
            "action": self.action.value,
            "styles": dict(self.styles),
        }
        if self.action is RuleAction.EDIT_TEXT:
            data["originalText"] = self.original_text
            data["newText"] = self.new_text
        data["created"] = self.created
        data["url"] = self.url
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Rule":
        """
        Build a rule from a stored record.

        Raises:
            InvalidRuleError: if the record is not a mapping, or its
                selector or styles have the wrong shape
            UnknownActionError: if the action is outside the supported set
        """
        if not isinstance(data, dict):
            raise InvalidRuleError(f"Rule record must be an object, got {type(data).__name__}")
        selector = data.get("selector") or ""
        if not isinstance(selector, str):
            raise InvalidRuleError(f"Rule selector must be a string, got {type(selector).__name__}")
        rule_id = data.get("id")
        return cls(
            selector=selector,
            action=parse_action(data.get("action")),
            styles=_parse_styles(data.get("styles")),
            original_text=data.get("originalText"),
            new_text=data.get("newText"),
            id=str(rule_id) if rule_id is not None else None,
            created=data.get("created"),
            url=data.get("url"),
        )

    def __str__(self) -> str:
        if self.action is RuleAction.STYLE:
            detail = ", ".join(f"{k}: {v}" for k, v in self.styles.items())
            return f"{self.action.value} {self.selector} {{{detail}}}"
        if self.action is RuleAction.EDIT_TEXT:
            preview = (self.new_text or "")[:30]
            return f"{self.action.value} {self.selector} -> {preview!r}"
        return f"{self.action.value} {self.selector}"


def parse_action(value: Any) -> RuleAction:
    try:
        return RuleAction(value)
    except ValueError:
        raise UnknownActionError(str(value)) from None


def _parse_styles(value: Any) -> Dict[str, str]:
    if not value:
        return {}
    if not isinstance(value, dict):
        raise InvalidRuleError(f"Rule styles must be an object, got {type(value).__name__}")
    return {str(name): str(v) for name, v in value.items() if v is not None}
