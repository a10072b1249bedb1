"""Core module - Rules, messaging, orchestration and driver management."""

from zapit.core.orchestrator import ApplyOrchestrator, ZapItConfig
from zapit.core.driver_factory import create_driver

__all__ = ["ApplyOrchestrator", "ZapItConfig", "create_driver"]
