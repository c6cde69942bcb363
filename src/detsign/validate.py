"""Precondition checks run once before any sandbox invocation.

Checks run in a fixed order and each one raises a typed error with its own
message.  Nothing here starts a build; the only mutation is creating the
scratch base directory once every check has passed.
"""

from __future__ import annotations

import shutil
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from detsign.backends.base import SandboxRunner
from detsign.config import CONFLICTING_OPTIONS_VAR, RunConfiguration
from detsign.errors import (
    ConfigurationError,
    PreconditionError,
    SandboxUnavailableError,
    StateError,
)
from detsign.git import GitRepo
from detsign.observability import StructuredLogger
from detsign.paths import build_paths

REQUIRED_TOOLS = ("git", "guix")

CLEANUP_HINT = "Remove stale work directories (e.g. `rm -rf <dir>`) and rerun."


def check_conflicting_environ(environ: Mapping[str, str]) -> None:
    """Refuse the raw environment before any other variable is parsed."""
    value = environ.get(CONFLICTING_OPTIONS_VAR)
    if value:
        raise _conflict_error(value)


def check_conflicting_options(config: RunConfiguration) -> None:
    if config.conflicting_build_options is not None:
        raise _conflict_error(config.conflicting_build_options)


def _conflict_error(value: str) -> ConfigurationError:
    return ConfigurationError(
        f"Environment variable {CONFLICTING_OPTIONS_VAR} is set.",
        hint=(
            f"Unset {CONFLICTING_OPTIONS_VAR} and pass the options through "
            "ADDITIONAL_GUIX_COMMON_FLAGS or ADDITIONAL_GUIX_ENVIRONMENT_FLAGS instead."
        ),
        context={
            "operation": "preflight",
            "variable": CONFLICTING_OPTIONS_VAR,
            "value": value,
        },
    )


def check_tools(
    tools: Sequence[str] = REQUIRED_TOOLS,
    *,
    which: Callable[[str], str | None] | None = None,
) -> None:
    lookup = which or shutil.which
    missing = [tool for tool in tools if lookup(tool) is None]
    if missing:
        raise ConfigurationError(
            f"Required tools are not invocable: {', '.join(missing)}.",
            hint="Install them and make sure they are in PATH.",
            context={"operation": "preflight", "missing": " ".join(missing)},
        )


def check_detached_sigs_supplied(config: RunConfiguration) -> Path:
    repo = config.detached_sigs_repo
    if repo is None:
        raise ConfigurationError(
            "DETACHED_SIGS_REPO is not set.",
            hint="Point DETACHED_SIGS_REPO at a checkout of the detached signatures.",
            context={"operation": "preflight", "variable": "DETACHED_SIGS_REPO"},
        )
    if not repo.is_dir():
        raise ConfigurationError(
            "DETACHED_SIGS_REPO does not name a directory.",
            context={"operation": "preflight", "path": str(repo)},
        )
    return repo


def check_worktree_clean(config: RunConfiguration, git: GitRepo | None = None) -> None:
    if config.force_dirty_worktree:
        return
    repo = git or GitRepo(config.source_dir)
    if not repo.is_clean():
        raise StateError(
            "The source worktree has uncommitted changes.",
            hint="Commit or stash them, or set FORCE_DIRTY_WORKTREE to build anyway.",
            context={"operation": "preflight", "path": str(config.source_dir)},
        )


def check_detached_sigs_clean(config: RunConfiguration) -> None:
    path = check_detached_sigs_supplied(config)
    repo = _require_worktree(
        path,
        "DETACHED_SIGS_REPO is not a git worktree.",
        hint="Clone the detached signatures repository instead of copying it.",
    )
    if config.force_dirty_detached_sigs:
        return
    if not repo.is_clean():
        raise StateError(
            "The detached signatures worktree has uncommitted changes.",
            hint=(
                "Commit or discard them, or set FORCE_DIRTY_DETACHED_SIGS "
                "to sign with the tree as it is."
            ),
            context={"operation": "preflight", "path": str(path)},
        )


def exposed_git_dirs(config: RunConfiguration) -> tuple[Path, ...]:
    """Git common dirs of the source and signature repos, deduplicated.

    Both are shared read-only with the sandbox so that git inside it can
    resolve linked worktrees.
    """
    source = _require_worktree(
        config.source_dir,
        "The source directory is not a git worktree.",
        hint="Run from a clone of the source repository or pass --source-dir.",
    )
    sigs = _require_worktree(
        check_detached_sigs_supplied(config),
        "DETACHED_SIGS_REPO is not a git worktree.",
        hint="Clone the detached signatures repository instead of copying it.",
    )
    common: list[Path] = []
    for repo in (source, sigs):
        path = repo.common_dir()
        if path not in common:
            common.append(path)
    return tuple(common)


def _require_worktree(path: Path, message: str, *, hint: str) -> GitRepo:
    repo = GitRepo(path)
    if not repo.is_worktree():
        raise StateError(message, hint=hint, context={"operation": "preflight", "path": str(path)})
    return repo


def check_scratch_dirs_absent(config: RunConfiguration) -> None:
    existing = [
        paths.distsrc
        for paths in (build_paths(config, target) for target in config.targets)
        if paths.distsrc.exists()
    ]
    if not existing:
        return
    listing = "\n".join(f"    {path}" for path in existing)
    raise StateError(
        "Build directories for this version already exist:\n" + listing,
        hint=CLEANUP_HINT,
        context={"operation": "preflight", "existing": " ".join(str(p) for p in existing)},
    )


def check_codesigning_tarballs(config: RunConfiguration) -> None:
    missing = [
        paths
        for paths in (build_paths(config, target) for target in config.targets)
        if not paths.codesigning_tarball.is_file()
    ]
    if not missing:
        return
    listing = "\n".join(f"    {paths.target}: {paths.codesigning_tarball}" for paths in missing)
    raise PreconditionError(
        "Codesigning tarballs do not exist for these targets:\n" + listing,
        hint="Run the unsigned build for these targets first.",
        context={
            "operation": "preflight",
            "targets": " ".join(paths.target for paths in missing),
        },
    )


def check_sandbox_reachable(runner: SandboxRunner) -> None:
    result = runner.probe()
    if result.ok:
        return
    raise SandboxUnavailableError(
        "The sandbox daemon did not respond.",
        hint="Restart guix-daemon and retry.",
        context={
            "operation": "preflight",
            "runner": runner.name,
            "returncode": str(result.returncode),
            "stderr": result.stderr[-2000:],
        },
    )


def ensure_scratch_base(config: RunConfiguration) -> Path:
    config.distsrc_base.mkdir(parents=True, exist_ok=True)
    return config.distsrc_base


@dataclass(frozen=True, slots=True)
class Preflight:
    """What the checks established: the resolved configuration and shared git dirs."""

    config: RunConfiguration
    git_dirs: tuple[Path, ...]


def run_preflight(
    config: RunConfiguration,
    *,
    runner: SandboxRunner,
    logger: StructuredLogger | None = None,
    tools: Sequence[str] = REQUIRED_TOOLS,
    which: Callable[[str], str | None] | None = None,
    git: GitRepo | None = None,
) -> Preflight:
    """Run every check in order; creating the scratch base is the last step."""
    check_conflicting_options(config)
    check_tools(tools, which=which)
    check_detached_sigs_supplied(config)
    resolved = config.resolve_revision(git)
    check_worktree_clean(resolved, git)
    check_detached_sigs_clean(resolved)
    git_dirs = exposed_git_dirs(resolved)
    check_scratch_dirs_absent(resolved)
    check_codesigning_tarballs(resolved)
    check_sandbox_reachable(runner)
    ensure_scratch_base(resolved)
    if logger is not None:
        logger.log(
            operation="preflight",
            target=None,
            phase="preflight",
            message="Preconditions satisfied.",
            extra={
                "version": resolved.require_version(),
                "targets": " ".join(resolved.targets),
                "reference timestamp": resolved.require_source_date_epoch(),
            },
        )
    return Preflight(config=resolved, git_dirs=git_dirs)
