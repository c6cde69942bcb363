"""Protocol for sandbox runners."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Protocol


@dataclass(frozen=True, slots=True)
class MountSpec:
    """Host path made visible inside the sandbox.

    ``read_only`` mounts are exposed rather than shared.  A ``target`` equal to
    the host path keeps the same location inside the sandbox.
    """

    source: Path
    target: PurePosixPath
    read_only: bool = False

    @property
    def same_path(self) -> bool:
        return str(self.source) == str(self.target)


@dataclass(frozen=True, slots=True)
class SandboxSpec:
    """One isolated invocation: what to mount, what env to forward, what to run."""

    label: str
    manifest: Path
    mounts: tuple[MountSpec, ...]
    env: Mapping[str, str]
    command: tuple[str, ...]
    jobs: int


@dataclass(frozen=True, slots=True)
class SandboxResult:
    returncode: int
    argv: tuple[str, ...] = ()
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class SandboxRunner(Protocol):
    name: str

    def probe(self) -> SandboxResult:
        """Run a no-op query against the sandbox daemon."""

    def execute(self, spec: SandboxSpec) -> SandboxResult:
        """Run ``spec`` to completion and report its exit status."""
