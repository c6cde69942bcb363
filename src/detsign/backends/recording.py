"""Recording sandbox runner for tests and dry runs.

Never launches a process.  Each executed spec is kept so callers can assert
on order, mounts and forwarded environment.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from detsign.backends.base import SandboxResult, SandboxSpec


@dataclass(slots=True)
class RecordingRunner:
    """Runner that records specs instead of launching a sandbox.

    ``returncodes`` maps a spec label to the status it should report; labels
    not listed succeed.
    """

    name: str = "recording"
    returncodes: dict[str, int] = field(default_factory=dict)
    probe_returncode: int = 0
    executed: list[SandboxSpec] = field(default_factory=list)
    probes: int = 0

    def probe(self) -> SandboxResult:
        self.probes += 1
        return SandboxResult(returncode=self.probe_returncode, argv=("probe",))

    def execute(self, spec: SandboxSpec) -> SandboxResult:
        self.executed.append(spec)
        return SandboxResult(
            returncode=self.returncodes.get(spec.label, 0),
            argv=spec.command,
        )

    @property
    def labels(self) -> list[str]:
        return [spec.label for spec in self.executed]
