"""Deterministic codesigning driver for guix-built distributions."""

from .backends import GuixShellRunner, RecordingRunner, SandboxRunner
from .codesign import CodesignReport, TargetResult, codesign_targets
from .config import RunConfiguration
from .errors import (
    ConfigurationError,
    DetsignError,
    InvocationError,
    PreconditionError,
    SandboxUnavailableError,
    StateError,
)
from .observability import StructuredLogger
from .paths import BuildPaths, build_paths
from .plan import CodesignPlan, build_plan
from .validate import Preflight, run_preflight

__all__ = [
    "BuildPaths",
    "CodesignPlan",
    "CodesignReport",
    "ConfigurationError",
    "DetsignError",
    "GuixShellRunner",
    "InvocationError",
    "Preflight",
    "PreconditionError",
    "RecordingRunner",
    "RunConfiguration",
    "SandboxRunner",
    "SandboxUnavailableError",
    "StateError",
    "StructuredLogger",
    "TargetResult",
    "build_paths",
    "build_plan",
    "codesign_targets",
    "run_preflight",
]
