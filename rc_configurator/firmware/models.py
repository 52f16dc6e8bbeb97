"""Pydantic model describing which firmware source tree a build uses."""

import re
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator

from rc_configurator.types import FirmwareSourceKind

_UNSAFE_CHARACTERS = re.compile(r"[^A-Za-z0-9._-]")


class FirmwareSource(BaseModel):
    """A firmware version: a ref in the firmware repository, or a local tree.

    Attributes:
        kind: Tag, branch, commit or local directory.
        ref: Tag name, branch name or commit hash (git kinds).
        local_path: Firmware source tree on disk (local kind).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: FirmwareSourceKind
    ref: str | None = Field(default=None, min_length=1, max_length=255)
    local_path: Path | None = None

    @model_validator(mode="after")
    def validate_location(self) -> "FirmwareSource":
        """Require exactly the field that matches ``kind``."""
        if self.kind.is_git:
            if self.ref is None:
                raise ValueError(f"{self.kind.value} source requires 'ref'")
            if self.local_path is not None:
                raise ValueError(f"{self.kind.value} source does not take 'local_path'")
        else:
            if self.local_path is None:
                raise ValueError("local source requires 'local_path'")
            if self.ref is not None:
                raise ValueError("local source does not take 'ref'")
        return self

    @classmethod
    def tag(cls, name: str) -> "FirmwareSource":
        return cls(kind=FirmwareSourceKind.GIT_TAG, ref=name)

    @classmethod
    def branch(cls, name: str) -> "FirmwareSource":
        return cls(kind=FirmwareSourceKind.GIT_BRANCH, ref=name)

    @classmethod
    def commit(cls, sha: str) -> "FirmwareSource":
        return cls(kind=FirmwareSourceKind.GIT_COMMIT, ref=sha)

    @classmethod
    def local(cls, path: Path | str) -> "FirmwareSource":
        return cls(kind=FirmwareSourceKind.LOCAL, local_path=Path(path))

    @property
    def key(self) -> str:
        """Stable identity, used to cache per-version data."""
        if self.kind.is_git:
            return f"{self.kind.value}:{self.ref}"
        return f"{self.kind.value}:{self.local_path}"

    @property
    def checkout_name(self) -> str:
        """Directory name for this version's checkout.

        Raises:
            ValueError: For local sources, which are never checked out.
        """
        if self.ref is None:
            raise ValueError("local sources have no checkout")
        return f"{self.kind.value}-{_UNSAFE_CHARACTERS.sub('_', self.ref)}"

    def __str__(self) -> str:
        if self.kind.is_git:
            return f"{self.kind.value.removeprefix('git_')} {self.ref}"
        return f"local {self.local_path}"


__all__ = ["FirmwareSource"]
