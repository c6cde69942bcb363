"""Sandbox runner interfaces and implementations."""

from .base import MountSpec, SandboxResult, SandboxRunner, SandboxSpec
from .guix import GuixShellRunner
from .recording import RecordingRunner

__all__ = [
    "GuixShellRunner",
    "MountSpec",
    "RecordingRunner",
    "SandboxResult",
    "SandboxRunner",
    "SandboxSpec",
]
