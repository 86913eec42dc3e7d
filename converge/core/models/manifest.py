"""
Manifest model — the declared desired state of a machine.

A manifest lists apps to install (one package reference per
platform), configuration files to restore, and checks to verify.
Manifests may include other manifests; after resolution the
``includes`` list is always empty.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class App(BaseModel):
    """A piece of software, addressed per platform.

    ``refs`` maps a platform name (``windows``, ``linux``, ``macos``)
    to the package reference the driver understands on that platform.
    """

    id: str
    refs: dict[str, str] = Field(default_factory=dict)
    version: str | None = None   # "X.Y.Z" or ">=X.Y.Z"

    def ref_for(self, platform: str) -> str | None:
        """The package reference for a platform, or None if absent."""
        ref = self.refs.get(platform)
        return ref or None


class RestoreItem(BaseModel):
    """A configuration file to put in place."""

    model_config = ConfigDict(extra="allow")

    type: str = "copy"
    source: str
    target: str
    id: str | None = None
    backup: bool = True

    @property
    def key(self) -> str:
        return self.id or self.target

    @property
    def options(self) -> dict[str, Any]:
        """Type-specific fields beyond the common ones."""
        return dict(self.model_extra or {})


class VerifyItem(BaseModel):
    """An outcome check: ``file-exists``, ``command-succeeds`` or custom."""

    model_config = ConfigDict(extra="allow")

    type: str
    id: str | None = None

    @property
    def options(self) -> dict[str, Any]:
        return dict(self.model_extra or {})

    @property
    def subject(self) -> str:
        """What the check looks at, for display and identifiers."""
        opts = self.options
        for key in ("path", "command", "key", "name"):
            if opts.get(key):
                return str(opts[key])
        return ""

    @property
    def key(self) -> str:
        if self.id:
            return self.id
        subject = self.subject
        return f"{self.type}:{subject}" if subject else self.type


class Manifest(BaseModel):
    """A manifest document (before or after include resolution)."""

    version: int
    name: str
    apps: list[App] = Field(default_factory=list)
    restore: list[RestoreItem] = Field(default_factory=list)
    verify: list[VerifyItem] = Field(default_factory=list)
    includes: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be empty")
        return v

    def content(self) -> dict[str, Any]:
        """Resolved content as plain data, independent of file location."""
        return self.model_dump(mode="json", exclude={"includes"})
