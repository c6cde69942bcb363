"""Shared test fixtures."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from detsign.backends import RecordingRunner
from detsign.config import RunConfiguration
from detsign.paths import build_paths

TARGETS = ("x86_64-w64-mingw32", "x86_64-apple-darwin", "arm64-apple-darwin")


@pytest.fixture
def recording_runner() -> RecordingRunner:
    """Provide a runner that records sandbox specs instead of launching guix."""
    return RecordingRunner()


@pytest.fixture
def signing_env(tmp_path: Path) -> dict[str, str]:
    """Environment for a run whose preconditions are all satisfied."""
    source = create_repo(tmp_path / "source")
    sigs = create_repo(tmp_path / "sigs")
    outdir_base = tmp_path / "output"
    environ = {
        "HOSTS": " ".join(TARGETS),
        "DETACHED_SIGS_REPO": str(sigs),
        "DISTSRC_BASE": str(tmp_path / "distsrc"),
        "OUTDIR_BASE": str(outdir_base),
        "FORCE_VERSION": "27.0",
        "DISTNAME": "demo-27.0",
        "SOURCE_DATE_EPOCH": "1700000000",
        "JOBS": "4",
        "SOURCE_DIR": str(source),
    }
    config = config_from(environ)
    for target in TARGETS:
        tarball = build_paths(config, target).codesigning_tarball
        tarball.parent.mkdir(parents=True, exist_ok=True)
        tarball.write_bytes(b"unsigned")
    return environ


@pytest.fixture
def signing_config(signing_env: dict[str, str]) -> RunConfiguration:
    return config_from(signing_env)


def config_from(environ: dict[str, str]) -> RunConfiguration:
    return RunConfiguration.from_environ(environ, source_dir=environ["SOURCE_DIR"])


def create_repo(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    run_git(["init"], cwd=path)
    run_git(["checkout", "-b", "main"], cwd=path)
    run_git(["config", "user.email", "detsign@example.com"], cwd=path)
    run_git(["config", "user.name", "Detsign Test"], cwd=path)
    run_git(["config", "commit.gpgsign", "false"], cwd=path)
    run_git(["config", "tag.gpgsign", "false"], cwd=path)

    (path / "README.md").write_text("hello repo\n", encoding="utf-8")
    run_git(["add", "README.md"], cwd=path)
    run_git(["commit", "-m", "initial"], cwd=path)
    return path


def run_git(argv: list[str], *, cwd: Path) -> str:
    completed = subprocess.run(
        ["git", *argv],
        cwd=cwd,
        check=False,
        text=True,
        capture_output=True,
    )
    if completed.returncode != 0:
        raise RuntimeError(f"git {' '.join(argv)} failed: {completed.stderr.strip()}")
    return completed.stdout.strip()
