"""Core architectural components for maintsentry.

This module provides:
- Strict layer separation (detection, decision, action, reporting)
- Dependency injection for OS interactions
- Per-task timeouts and session cancellation
- The error taxonomy shared by every layer

Configuration and session context live in ``core.config`` and
``core.context``; import them from there.
"""

from .errors import (
    ActionItemError,
    CommandExecutionError,
    ConfigurationError,
    DetectionError,
    MaintenanceError,
    NormalizationError,
    TaskTimeoutError,
    TemplateResolutionError,
)
from .interfaces import ActionCapability, CommandResult, DetectionCapability, OSInterface
from .injection import DependencyContainer, MockOSInterface, RealOSInterface
from .resilience import CancellationToken, call_with_timeout, with_graceful_degradation

__all__ = [
    # Errors
    "MaintenanceError",
    "ConfigurationError",
    "DetectionError",
    "ActionItemError",
    "TemplateResolutionError",
    "NormalizationError",
    "TaskTimeoutError",
    "CommandExecutionError",
    # Interfaces
    "ActionCapability",
    "DetectionCapability",
    "OSInterface",
    "CommandResult",
    # Dependency Injection
    "DependencyContainer",
    "RealOSInterface",
    "MockOSInterface",
    # Resilience
    "CancellationToken",
    "call_with_timeout",
    "with_graceful_degradation",
]
