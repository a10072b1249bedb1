"""Action Layer - Applying, reverting and authoring rules."""

from zapit.layers.action.rule_engine import ApplyReport, RuleEngine
from zapit.layers.action.snapshot_store import SnapshotKind, SnapshotStore
from zapit.layers.action.page_agent import EditModeSubscription, PageAgent

__all__ = [
    "ApplyReport",
    "EditModeSubscription",
    "PageAgent",
    "RuleEngine",
    "SnapshotKind",
    "SnapshotStore",
]
