"""Plugin subsystem -- capability base classes, loader, and registry."""

from specrun.plugins.base import (
    BaseDebtDetector,
    BaseExecutor,
    BaseFailureAnalyzer,
    BasePlugin,
    BaseReporter,
    BaseValidator,
    Capability,
)
from specrun.plugins.registry import PluginRegistry

__all__ = [
    "BaseDebtDetector",
    "BaseExecutor",
    "BaseFailureAnalyzer",
    "BasePlugin",
    "BaseReporter",
    "BaseValidator",
    "Capability",
    "PluginRegistry",
]
