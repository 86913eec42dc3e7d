"""
Domain models — Pydantic types for the convergence core.

All models are re-exported here for convenient access:

    from converge.core.models import Manifest, AppAction, Plan, RunState
"""

from converge.core.models.action import (
    Action,
    ActionStatus,
    AppAction,
    InstallResult,
    ProgressEvent,
    RestoreAction,
    VerifyAction,
    parse_action,
)
from converge.core.models.manifest import App, Manifest, RestoreItem, VerifyItem
from converge.core.models.plan import (
    Plan,
    PlanManifest,
    PlanSummary,
    RunState,
    StateManifest,
)

__all__ = [
    # action.py
    "Action",
    "ActionStatus",
    # manifest.py
    "App",
    "AppAction",
    "InstallResult",
    "Manifest",
    # plan.py
    "Plan",
    "PlanManifest",
    "PlanSummary",
    "ProgressEvent",
    "RestoreAction",
    "RestoreItem",
    "RunState",
    "StateManifest",
    "VerifyAction",
    "VerifyItem",
    "parse_action",
]
