"""
SDK CI common module.

This module contains the shared domain models, error types and the abstract
build API interface used across the sdkci components (client, engine,
action).

The common module has no dependencies on other sdkci_* modules, making it
a pure domain layer that can be imported by any component.
"""

from .api import BuildAPI
from .errors import (
    BuildAPIError,
    CombineError,
    ConfigurationError,
    NotFoundError,
    SDKCIError,
)
from .models import (
    Build,
    BuildComparison,
    BuildCreation,
    BuildTarget,
    CheckStep,
    CommitRef,
    CommitResult,
    Diagnostic,
    Outcomes,
    RunResult,
)

__all__ = [
    "Build",
    "BuildAPI",
    "BuildAPIError",
    "BuildComparison",
    "BuildCreation",
    "BuildTarget",
    "CheckStep",
    "CombineError",
    "CommitRef",
    "CommitResult",
    "ConfigurationError",
    "Diagnostic",
    "NotFoundError",
    "Outcomes",
    "RunResult",
    "SDKCIError",
]
