"""Store - Durable rule storage."""

from zapit.store.rule_repository import JsonStorage, RuleRepository

__all__ = ["JsonStorage", "RuleRepository"]
