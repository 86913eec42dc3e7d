"""
Action, InstallResult and ProgressEvent — the execution contract.

Actions are what the planner decides to do. InstallResults are what
the engine reports back, one per dispatched action. ProgressEvents
are the ephemeral lifecycle notifications emitted while workers run.

Actions are a tagged union on ``type``: each variant enforces its
required fields at construction, and all of them are frozen. A status
change produces a new action via ``with_status``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic.alias_generators import to_camel

ActionStatus = Literal["pending", "pass", "fail", "skip"]


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class _ActionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    ref: str = ""
    status: ActionStatus = "pending"
    message: str = ""

    def with_status(self, status: ActionStatus, message: str | None = None):
        """Copy of this action with a new status (and optionally message)."""
        update: dict = {"status": status}
        if message is not None:
            update["message"] = message
        return self.model_copy(update=update)

    @property
    def key(self) -> tuple[str, str]:
        """Identity of an action across runs."""
        return (self.type, self.id)  # type: ignore[attr-defined]


class AppAction(_ActionBase):
    """Install (or confirm) one app through a driver."""

    type: Literal["app"] = "app"
    driver: str
    version: str | None = None      # observed installed version
    constraint: str | None = None   # manifest version constraint

    @model_validator(mode="after")
    def _ref_required(self) -> AppAction:
        if not self.ref and self.status != "skip":
            raise ValueError(f"app action '{self.id}' needs a package ref")
        return self


class RestoreAction(_ActionBase):
    """Put one configuration file in place."""

    type: Literal["restore"] = "restore"


class VerifyAction(_ActionBase):
    """One outcome check."""

    type: Literal["verify"] = "verify"


Action = Annotated[
    Union[AppAction, RestoreAction, VerifyAction],
    Field(discriminator="type"),
]

_action_adapter: TypeAdapter = TypeAdapter(Action)


def parse_action(data: dict) -> AppAction | RestoreAction | VerifyAction:
    """Build the right Action variant from its serialized form."""
    return _action_adapter.validate_python(data)


class InstallResult(BaseModel):
    """Outcome of one dispatched install.

    Produced exactly once per action by the worker that ran it. The
    ``app_id``/``package_id`` pair names the originating action; never
    rely on a result's position in a list.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    package_id: str
    app_id: str
    slot_id: int = 0
    message: str = ""
    output: list[str] = Field(default_factory=list)
    start_time: str = Field(default_factory=_now_iso)
    end_time: str = Field(default_factory=_now_iso)

    @classmethod
    def ok(cls, action: AppAction, message: str, **kwargs) -> InstallResult:
        """Create a success result for an action."""
        return cls(success=True, package_id=action.ref, app_id=action.id, message=message, **kwargs)

    @classmethod
    def failure(cls, action: AppAction, message: str, **kwargs) -> InstallResult:
        """Create a failure result for an action."""
        return cls(success=False, package_id=action.ref, app_id=action.id, message=message, **kwargs)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ProgressEvent(BaseModel):
    """Lifecycle notification from a worker. Never persisted."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    type: Literal["AppStarted", "AppCompleted"]
    app_id: str
    timestamp: str = Field(default_factory=_now_iso)
    success: bool | None = None

    @classmethod
    def started(cls, app_id: str) -> ProgressEvent:
        return cls(type="AppStarted", app_id=app_id)

    @classmethod
    def completed(cls, app_id: str, success: bool) -> ProgressEvent:
        return cls(type="AppCompleted", app_id=app_id, success=success)
