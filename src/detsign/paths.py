"""Deterministic per-target path layout.

Every function here is pure: the same base, version, target and suffix always
yield the same path.  The same functions are evaluated twice per target, once
against the host bases and once against the in-sandbox mount points, so the
two views never drift apart.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePath, PurePosixPath
from typing import TYPE_CHECKING, TypeVar

from detsign.errors import ConfigurationError

if TYPE_CHECKING:
    from detsign.config import RunConfiguration

CODESIGNED_SUFFIX = "codesigned"

SANDBOX_SOURCE_DIR = PurePosixPath("/source")
SANDBOX_DISTSRC_BASE = PurePosixPath("/distsrc-base")
SANDBOX_OUTDIR_BASE = PurePosixPath("/outdir-base")
SANDBOX_DETACHED_SIGS = PurePosixPath("/detached-sigs")
SANDBOX_DIST_ARCHIVE_BASE = SANDBOX_OUTDIR_BASE / "dist-archive"

P = TypeVar("P", bound=PurePath)


def distsrc_for_target(base: P, version: str, target: str, suffix: str | None = None) -> P:
    """Scratch directory: ``<base>/distsrc-<version>-<target>[-<suffix>]``."""
    name = f"distsrc-{version}-{target}"
    if suffix:
        name = f"{name}-{suffix}"
    return base / name


def outdir_for_target(base: P, target: str, suffix: str | None = None) -> P:
    """Output directory: ``<base>/<target>[-<suffix>]``."""
    name = f"{target}-{suffix}" if suffix else target
    return base / name


def codesigning_tarball_for_target(outdir_base: P, distname: str, target: str) -> P:
    """Location of the unsigned codesigning tarball produced by the build stage.

    Windows targets share one tarball name; Darwin targets carry the triple in
    the file name since each architecture is signed separately.
    """
    unsigned_dir = outdir_for_target(outdir_base, target)
    if "mingw" in target:
        return unsigned_dir / f"{distname}-win64-codesigning.tar.gz"
    if "darwin" in target:
        return unsigned_dir / f"{distname}-{target}-codesigning.tar.gz"
    raise ConfigurationError(
        f"Target `{target}` has no codesigning tarball convention.",
        hint="Only mingw and darwin targets are signed; remove it from HOSTS.",
        context={"operation": "codesigning_tarball", "target": target},
    )


@dataclass(frozen=True, slots=True)
class BuildPaths:
    """Host and in-sandbox paths for one target of one run."""

    target: str
    distsrc: Path
    outdir: Path
    codesigning_tarball: Path
    sandbox_distsrc: PurePosixPath
    sandbox_outdir: PurePosixPath
    sandbox_codesigning_tarball: PurePosixPath


def build_paths(config: RunConfiguration, target: str) -> BuildPaths:
    version = config.require_version()
    return BuildPaths(
        target=target,
        distsrc=distsrc_for_target(config.distsrc_base, version, target, CODESIGNED_SUFFIX),
        outdir=outdir_for_target(config.outdir_base, target, CODESIGNED_SUFFIX),
        codesigning_tarball=codesigning_tarball_for_target(
            config.outdir_base,
            config.distname,
            target,
        ),
        sandbox_distsrc=distsrc_for_target(
            SANDBOX_DISTSRC_BASE,
            version,
            target,
            CODESIGNED_SUFFIX,
        ),
        sandbox_outdir=outdir_for_target(SANDBOX_OUTDIR_BASE, target, CODESIGNED_SUFFIX),
        sandbox_codesigning_tarball=codesigning_tarball_for_target(
            SANDBOX_OUTDIR_BASE,
            config.distname,
            target,
        ),
    )
