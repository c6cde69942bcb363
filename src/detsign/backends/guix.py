"""Guix container runner.

Runs each signing step inside ``guix shell --container --pure``.  When a guix
revision is pinned, the shell is launched through ``guix time-machine`` so the
package set does not depend on whatever guix the host happens to run.

This runner requires:
- ``guix`` available in PATH
- a running ``guix-daemon``
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from typing import TYPE_CHECKING

from detsign.backends.base import MountSpec, SandboxResult, SandboxSpec
from detsign.config import DEFAULT_GUIX_CHANNEL_URL

if TYPE_CHECKING:
    from detsign.config import RunConfiguration

# Cheapest request that still needs an answer from guix-daemon.
DAEMON_PROBE_ARGS = ("gc", "--list-failures")


@dataclass(slots=True)
class GuixShellRunner:
    """Sandbox runner backed by ``guix shell --container``."""

    name: str = "guix_shell"
    guix: str = "guix"
    substitute_urls: tuple[str, ...] = ()
    common_flags: tuple[str, ...] = ()
    environment_flags: tuple[str, ...] = ()
    timemachine_flags: tuple[str, ...] = ()
    time_machine_commit: str | None = None
    time_machine_url: str = DEFAULT_GUIX_CHANNEL_URL
    capture_output: bool = False

    @classmethod
    def from_config(
        cls,
        config: RunConfiguration,
        *,
        capture_output: bool = False,
    ) -> GuixShellRunner:
        return cls(
            substitute_urls=config.substitute_urls,
            common_flags=config.additional_common_flags,
            environment_flags=config.additional_environment_flags,
            timemachine_flags=config.additional_timemachine_flags,
            time_machine_commit=config.time_machine_commit,
            time_machine_url=config.time_machine_url,
            capture_output=capture_output,
        )

    def probe(self) -> SandboxResult:
        argv = (self.guix, *DAEMON_PROBE_ARGS)
        completed = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            check=False,
        )
        return SandboxResult(
            returncode=completed.returncode,
            argv=argv,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )

    def execute(self, spec: SandboxSpec) -> SandboxResult:
        argv = tuple(self.command_for(spec))
        completed = subprocess.run(
            argv,
            capture_output=self.capture_output,
            text=True,
            check=False,
        )
        return SandboxResult(
            returncode=completed.returncode,
            argv=argv,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )

    def command_for(self, spec: SandboxSpec) -> list[str]:
        """Full argv for ``spec``; stable for identical inputs."""
        shell = self._shell_args(spec)
        if self.time_machine_commit is None:
            return [self.guix, *shell]
        return [self.guix, *self._time_machine_args(spec), "--", *shell]

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _time_machine_args(self, spec: SandboxSpec) -> list[str]:
        return [
            "time-machine",
            f"--url={self.time_machine_url}",
            f"--commit={self.time_machine_commit}",
            *self._build_policy_args(spec),
            *self.common_flags,
            *self.timemachine_flags,
        ]

    def _shell_args(self, spec: SandboxSpec) -> list[str]:
        args = [
            "shell",
            f"--manifest={spec.manifest}",
            "--container",
            "--pure",
            "--no-cwd",
        ]
        args.extend(_mount_arg(mount) for mount in spec.mounts)
        args.extend(self._build_policy_args(spec))
        args.extend(self.common_flags)
        args.extend(self.environment_flags)
        args.extend(["--", "env"])
        args.extend(f"{key}={value}" for key, value in spec.env.items())
        args.extend(spec.command)
        return args

    def _build_policy_args(self, spec: SandboxSpec) -> list[str]:
        args = [f"--cores={spec.jobs}", "--keep-failed", "--fallback"]
        if self.substitute_urls:
            args.append(f"--substitute-urls={' '.join(self.substitute_urls)}")
        return args


def _mount_arg(mount: MountSpec) -> str:
    flag = "--expose" if mount.read_only else "--share"
    if mount.same_path:
        return f"{flag}={mount.source}"
    return f"{flag}={mount.source}={mount.target}"
