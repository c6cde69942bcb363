"""Per-target codesigning loop.

Targets are processed one at a time in configured order.  The first target
whose sandbox invocation fails stops the loop; later targets are reported as
not attempted and nothing is retried.
"""

from __future__ import annotations

import shlex
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from types import FrameType

from detsign.backends.base import MountSpec, SandboxRunner, SandboxSpec
from detsign.config import RunConfiguration
from detsign.errors import InvocationError
from detsign.observability import StructuredLogger
from detsign.paths import (
    SANDBOX_DETACHED_SIGS,
    SANDBOX_DIST_ARCHIVE_BASE,
    SANDBOX_DISTSRC_BASE,
    SANDBOX_OUTDIR_BASE,
    SANDBOX_SOURCE_DIR,
    BuildPaths,
    build_paths,
)
from detsign.validate import CLEANUP_HINT, check_detached_sigs_supplied, exposed_git_dirs


@dataclass(frozen=True, slots=True)
class TargetResult:
    target: str
    paths: BuildPaths
    returncode: int
    argv: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(slots=True)
class CodesignReport:
    results: list[TargetResult] = field(default_factory=list)
    not_attempted: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return all(result.ok for result in self.results) and not self.not_attempted

    @property
    def failed(self) -> TargetResult | None:
        for result in self.results:
            if not result.ok:
                return result
        return None

    def raise_for_failure(self) -> None:
        failed = self.failed
        if failed is None:
            return
        raise InvocationError(
            f"Codesigning failed for {failed.target}.",
            hint=(
                "Inspect the sandbox output above, clean the work directories "
                "and rerun the whole set of targets."
            ),
            context={
                "operation": "codesign",
                "target": failed.target,
                "returncode": str(failed.returncode),
                "scratch": str(failed.paths.distsrc),
                "not_attempted": " ".join(self.not_attempted),
            },
        )


def sandbox_spec_for(
    config: RunConfiguration,
    paths: BuildPaths,
    *,
    git_dirs: tuple[Path, ...] = (),
) -> SandboxSpec:
    """Describe the isolated invocation that signs ``paths.target``."""
    detached_sigs = check_detached_sigs_supplied(config)
    mounts = [
        MountSpec(source=config.source_dir, target=SANDBOX_SOURCE_DIR),
        MountSpec(source=config.distsrc_base, target=SANDBOX_DISTSRC_BASE),
        MountSpec(source=config.outdir_base, target=SANDBOX_OUTDIR_BASE),
        MountSpec(source=detached_sigs, target=SANDBOX_DETACHED_SIGS),
    ]
    mounts.extend(
        MountSpec(source=git_dir, target=PurePosixPath(git_dir), read_only=True)
        for git_dir in git_dirs
    )
    if config.sources_path is not None:
        mounts.append(
            MountSpec(source=config.sources_path, target=PurePosixPath(config.sources_path))
        )

    env: dict[str, str] = {
        "HOST": paths.target,
        "DISTNAME": config.distname,
        "JOBS": str(config.jobs),
        "SOURCE_DATE_EPOCH": str(config.require_source_date_epoch()),
    }
    if config.verbose:
        env["V"] = "1"
    if config.sources_path is not None:
        env["SOURCES_PATH"] = str(config.sources_path)
    env.update(
        {
            "DISTSRC": str(paths.sandbox_distsrc),
            "OUTDIR": str(paths.sandbox_outdir),
            "DIST_ARCHIVE_BASE": str(SANDBOX_DIST_ARCHIVE_BASE),
            "DETACHED_SIGS_REPO": str(SANDBOX_DETACHED_SIGS),
            "CODESIGNING_TARBALL": str(paths.sandbox_codesigning_tarball),
        }
    )
    script = f"cd {SANDBOX_SOURCE_DIR} && bash {shlex.quote(config.codesign_script)}"
    return SandboxSpec(
        label=paths.target,
        manifest=config.manifest,
        mounts=tuple(mounts),
        env=env,
        command=("bash", "-c", script),
        jobs=config.jobs,
    )


def codesign_targets(
    config: RunConfiguration,
    *,
    runner: SandboxRunner,
    logger: StructuredLogger,
    git_dirs: tuple[Path, ...] | None = None,
) -> CodesignReport:
    """Sign every configured target in order, stopping at the first failure."""
    if git_dirs is None:
        git_dirs = exposed_git_dirs(config)
    report = CodesignReport()
    for index, target in enumerate(config.targets):
        paths = build_paths(config, target)
        _trace(config, paths, logger)
        spec = sandbox_spec_for(config, paths, git_dirs=git_dirs)
        with interrupt_hint(paths, logger):
            result = runner.execute(spec)
        report.results.append(
            TargetResult(
                target=target,
                paths=paths,
                returncode=result.returncode,
                argv=result.argv,
            )
        )
        if not result.ok:
            report.not_attempted = config.targets[index + 1 :]
            logger.log(
                operation="codesign_target_failed",
                target=target,
                phase="codesign",
                level="error",
                message=f"Codesigning {target} exited with status {result.returncode}.",
                extra={"not attempted": " ".join(report.not_attempted) or "(none)"},
            )
            return report
        logger.log(
            operation="codesign_target_complete",
            target=target,
            phase="codesign",
            message=f"Codesigned {target}.",
            extra={"output": str(paths.outdir)},
        )
    return report


@contextmanager
def interrupt_hint(paths: BuildPaths, logger: StructuredLogger) -> Iterator[None]:
    """Log which directories may be half-written if SIGINT arrives.

    Nothing is rolled back; the interrupt still propagates.  Python only
    delivers signals to the main thread, so elsewhere no handler is installed.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum: int, frame: FrameType | None) -> None:
        logger.log(
            operation="interrupt",
            target=paths.target,
            phase="codesign",
            level="error",
            message=(
                f"Interrupt received while codesigning {paths.target}; "
                "these directories may be inconsistent."
            ),
            extra={
                "build directory": str(paths.distsrc),
                "output directory": str(paths.outdir),
                "hint": CLEANUP_HINT,
            },
        )
        raise KeyboardInterrupt

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _trace(config: RunConfiguration, paths: BuildPaths, logger: StructuredLogger) -> None:
    logger.log(
        operation="codesign_target_start",
        target=paths.target,
        phase="codesign",
        message=f"Codesigning {config.require_version()} for platform triple {paths.target}:",
        extra={
            "using reference timestamp": config.require_source_date_epoch(),
            "from worktree directory": str(config.source_dir),
            "worktree in container": str(SANDBOX_SOURCE_DIR),
            "in build directory": str(paths.distsrc),
            "build directory in container": str(paths.sandbox_distsrc),
            "outputting in": str(paths.outdir),
            "output directory in container": str(paths.sandbox_outdir),
            "using detached signatures in": str(config.detached_sigs_repo),
            "detached signatures in container": str(SANDBOX_DETACHED_SIGS),
        },
    )
