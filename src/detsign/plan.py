"""Codesigning plan model and export helpers.

A plan lists, per target, the resolved paths and the exact sandbox command a
run would execute.  Exports are byte-stable so two operators can compare
plans before signing.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

import cbor2

from detsign.backends.base import SandboxSpec
from detsign.backends.guix import GuixShellRunner
from detsign.codesign import sandbox_spec_for
from detsign.config import RunConfiguration
from detsign.paths import build_paths


@dataclass(frozen=True, slots=True)
class TargetPlan:
    target: str
    distsrc: str
    outdir: str
    codesigning_tarball: str
    argv: tuple[str, ...]
    env: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CodesignPlan:
    version: str
    source_date_epoch: int
    jobs: int
    targets: tuple[TargetPlan, ...] = ()
    schema_version: int = 1

    def to_json(self, path: str | Path | None = None) -> str:
        payload = self._payload()
        encoded = json.dumps(payload, indent=2, sort_keys=True) + "\n"
        if path is not None:
            Path(path).write_text(encoded, encoding="utf-8")
        return encoded

    def to_cbor(self, path: str | Path | None = None) -> bytes:
        payload = self._payload()
        encoded = cbor2.dumps(payload, canonical=True)
        if path is not None:
            Path(path).write_bytes(encoded)
        return encoded

    def _payload(self) -> dict[str, object]:
        return {
            "schema_version": self.schema_version,
            "version": self.version,
            "source_date_epoch": self.source_date_epoch,
            "jobs": self.jobs,
            # Target order is execution order; keep it as a list.
            "targets": [
                {
                    "target": plan.target,
                    "distsrc": plan.distsrc,
                    "outdir": plan.outdir,
                    "codesigning_tarball": plan.codesigning_tarball,
                    "argv": list(plan.argv),
                    "env": dict(sorted(plan.env.items())),
                }
                for plan in self.targets
            ],
        }


def build_plan(
    config: RunConfiguration,
    *,
    runner: GuixShellRunner | None = None,
    git_dirs: tuple[Path, ...] = (),
) -> CodesignPlan:
    """Describe every invocation for a revision-resolved configuration."""
    guix = runner or GuixShellRunner.from_config(config)
    targets: list[TargetPlan] = []
    for target in config.targets:
        paths = build_paths(config, target)
        spec: SandboxSpec = sandbox_spec_for(config, paths, git_dirs=git_dirs)
        targets.append(
            TargetPlan(
                target=target,
                distsrc=str(paths.distsrc),
                outdir=str(paths.outdir),
                codesigning_tarball=str(paths.codesigning_tarball),
                argv=tuple(guix.command_for(spec)),
                env=dict(spec.env),
            )
        )
    return CodesignPlan(
        version=config.require_version(),
        source_date_epoch=config.require_source_date_epoch(),
        jobs=config.jobs,
        targets=tuple(targets),
    )
