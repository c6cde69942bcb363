"""Immutable run configuration built once from the environment."""

from __future__ import annotations

import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path

from detsign.errors import ConfigurationError
from detsign.git import GitRepo

DEFAULT_TARGETS = (
    "x86_64-w64-mingw32",
    "x86_64-apple-darwin",
    "arm64-apple-darwin",
)
DEFAULT_MANIFEST = Path("contrib/guix/manifest.scm")
DEFAULT_CODESIGN_SCRIPT = "contrib/guix/libexec/codesign.sh"
DEFAULT_GUIX_CHANNEL_URL = "https://git.savannah.gnu.org/git/guix.git"

# Presence of this variable means guix would silently apply options we do not
# control; the run refuses to start.
CONFLICTING_OPTIONS_VAR = "GUIX_BUILD_OPTIONS"


@dataclass(frozen=True, slots=True)
class RunConfiguration:
    """Snapshot of every environment-derived setting for one run.

    ``version`` and ``source_date_epoch`` may be left unset by the caller;
    :meth:`resolve_revision` fills them from git and returns a new instance.
    """

    source_dir: Path
    targets: tuple[str, ...] = DEFAULT_TARGETS
    jobs: int = 1
    detached_sigs_repo: Path | None = None
    version: str | None = None
    source_date_epoch: int | None = None
    distname_setting: str | None = None
    distsrc_base_setting: Path | None = None
    outdir_base_setting: Path | None = None
    sources_path: Path | None = None
    substitute_urls: tuple[str, ...] = ()
    force_dirty_detached_sigs: bool = False
    force_dirty_worktree: bool = False
    additional_common_flags: tuple[str, ...] = ()
    additional_environment_flags: tuple[str, ...] = ()
    additional_timemachine_flags: tuple[str, ...] = ()
    time_machine_commit: str | None = None
    time_machine_url: str = DEFAULT_GUIX_CHANNEL_URL
    conflicting_build_options: str | None = None
    manifest: Path = DEFAULT_MANIFEST
    codesign_script: str = DEFAULT_CODESIGN_SCRIPT
    verbose: bool = False

    @classmethod
    def from_environ(
        cls,
        environ: Mapping[str, str],
        *,
        source_dir: str | Path,
    ) -> RunConfiguration:
        """Parse the environment without touching git or the filesystem."""
        source = Path(source_dir).resolve()
        targets = tuple(_get(environ, "HOSTS", " ".join(DEFAULT_TARGETS)).split())
        if not targets:
            raise ConfigurationError(
                "HOSTS does not name any target.",
                hint="Unset HOSTS or list at least one platform triple.",
                context={"operation": "config", "variable": "HOSTS"},
            )
        manifest = Path(_get(environ, "GUIX_MANIFEST", str(DEFAULT_MANIFEST)))
        return cls(
            source_dir=source,
            targets=targets,
            jobs=_parse_jobs(environ),
            detached_sigs_repo=_optional_path(environ, "DETACHED_SIGS_REPO"),
            version=_optional(environ, "FORCE_VERSION"),
            source_date_epoch=_parse_epoch(environ),
            distname_setting=_optional(environ, "DISTNAME"),
            distsrc_base_setting=_optional_path(environ, "DISTSRC_BASE"),
            outdir_base_setting=_optional_path(environ, "OUTDIR_BASE"),
            sources_path=_optional_path(environ, "SOURCES_PATH"),
            substitute_urls=tuple(_get(environ, "SUBSTITUTE_URLS", "").split()),
            force_dirty_detached_sigs=_flag(environ, "FORCE_DIRTY_DETACHED_SIGS"),
            force_dirty_worktree=_flag(environ, "FORCE_DIRTY_WORKTREE"),
            additional_common_flags=_flags(environ, "ADDITIONAL_GUIX_COMMON_FLAGS"),
            additional_environment_flags=_flags(environ, "ADDITIONAL_GUIX_ENVIRONMENT_FLAGS"),
            additional_timemachine_flags=_flags(environ, "ADDITIONAL_GUIX_TIMEMACHINE_FLAGS"),
            time_machine_commit=_optional(environ, "GUIX_TIME_MACHINE_COMMIT"),
            time_machine_url=_get(environ, "GUIX_TIME_MACHINE_URL", DEFAULT_GUIX_CHANNEL_URL),
            conflicting_build_options=_optional(environ, CONFLICTING_OPTIONS_VAR),
            manifest=manifest if manifest.is_absolute() else source / manifest,
            codesign_script=_get(environ, "CODESIGN_SCRIPT", DEFAULT_CODESIGN_SCRIPT),
            verbose=_flag(environ, "V"),
        )

    def resolve_revision(self, git: GitRepo | None = None) -> RunConfiguration:
        """Fill in version and reference timestamp from the source repository.

        A caller-provided ``SOURCE_DATE_EPOCH`` is kept as-is.
        """
        if self.version is not None and self.source_date_epoch is not None:
            return self
        repo = git or GitRepo(self.source_dir)
        version = self.version if self.version is not None else repo.head_version()
        epoch = (
            self.source_date_epoch
            if self.source_date_epoch is not None
            else repo.last_commit_timestamp()
        )
        return replace(self, version=version, source_date_epoch=epoch)

    def require_version(self) -> str:
        if self.version is None:
            raise ConfigurationError(
                "Version is not resolved yet.",
                hint="Call resolve_revision() or set FORCE_VERSION.",
                context={"operation": "config"},
            )
        return self.version

    def require_source_date_epoch(self) -> int:
        if self.source_date_epoch is None:
            raise ConfigurationError(
                "Reference timestamp is not resolved yet.",
                hint="Call resolve_revision() or set SOURCE_DATE_EPOCH.",
                context={"operation": "config"},
            )
        return self.source_date_epoch

    @property
    def version_base(self) -> Path:
        return self.source_dir / f"guix-build-{self.require_version()}"

    @property
    def distsrc_base(self) -> Path:
        return self.distsrc_base_setting or self.version_base

    @property
    def outdir_base(self) -> Path:
        return self.outdir_base_setting or self.version_base / "output"

    @property
    def distname(self) -> str:
        return self.distname_setting or f"{self.source_dir.name}-{self.require_version()}"


def _get(environ: Mapping[str, str], name: str, default: str) -> str:
    return environ.get(name) or default


def _optional(environ: Mapping[str, str], name: str) -> str | None:
    value = environ.get(name)
    return value or None


def _optional_path(environ: Mapping[str, str], name: str) -> Path | None:
    value = _optional(environ, name)
    return Path(value).expanduser().resolve() if value is not None else None


def _flag(environ: Mapping[str, str], name: str) -> bool:
    return bool(environ.get(name))


def _flags(environ: Mapping[str, str], name: str) -> tuple[str, ...]:
    return tuple(shlex.split(environ.get(name, "")))


def _parse_jobs(environ: Mapping[str, str]) -> int:
    raw = _optional(environ, "JOBS")
    if raw is None:
        return os.cpu_count() or 1
    try:
        jobs = int(raw)
    except ValueError:
        jobs = 0
    if jobs < 1:
        raise ConfigurationError(
            "JOBS must be a positive integer.",
            context={"operation": "config", "variable": "JOBS", "value": raw},
        )
    return jobs


def _parse_epoch(environ: Mapping[str, str]) -> int | None:
    raw = _optional(environ, "SOURCE_DATE_EPOCH")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(
            "SOURCE_DATE_EPOCH must be an integer number of seconds.",
            hint="Unset it to use the last commit time.",
            context={"operation": "config", "variable": "SOURCE_DATE_EPOCH", "value": raw},
        ) from exc
