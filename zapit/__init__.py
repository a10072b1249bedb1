"""
ZapIt - Persistent Page Mutations.

Pick an element on a web page, remove it, restyle it or rewrite its
text, and have that mutation re-applied on every later visit to the
same site.
"""

__version__ = "0.4.0"

from zapit.core.rule import Rule, RuleAction, StyleProperty
from zapit.core.orchestrator import ApplyOrchestrator

__all__ = [
    "ApplyOrchestrator",
    "Rule",
    "RuleAction",
    "StyleProperty",
    "__version__",
]
