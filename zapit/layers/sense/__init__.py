"""Sense Layer - Documents and selectors."""

from zapit.layers.sense.document import Document, Element, SoupDocument
from zapit.layers.sense.selector_codec import synthesize, validate_or_escape

__all__ = ["Document", "Element", "SoupDocument", "synthesize", "validate_or_escape"]
