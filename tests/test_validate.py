from dataclasses import replace
from pathlib import Path

import pytest
from conftest import TARGETS, config_from

from detsign.backends import RecordingRunner
from detsign.config import RunConfiguration
from detsign.errors import (
    ConfigurationError,
    PreconditionError,
    SandboxUnavailableError,
    StateError,
)
from detsign.observability import StructuredLogger
from detsign.paths import build_paths
from detsign.validate import (
    check_codesigning_tarballs,
    check_conflicting_environ,
    check_detached_sigs_clean,
    check_scratch_dirs_absent,
    check_tools,
    run_preflight,
)


def _present(_: str) -> str:
    return "/usr/bin/tool"


def test_preflight_passes_and_creates_scratch_base(
    signing_config: RunConfiguration,
    recording_runner: RecordingRunner,
) -> None:
    logger = StructuredLogger()

    preflight = run_preflight(
        signing_config,
        runner=recording_runner,
        logger=logger,
        which=_present,
    )

    assert signing_config.detached_sigs_repo is not None
    assert preflight.config.distsrc_base.is_dir()
    assert preflight.git_dirs == (
        (signing_config.source_dir / ".git").resolve(),
        (signing_config.detached_sigs_repo / ".git").resolve(),
    )
    assert recording_runner.probes == 1
    assert recording_runner.executed == []
    assert logger.records[-1]["operation"] == "preflight"


def test_conflicting_options_abort_before_any_other_check(
    tmp_path: Path,
    recording_runner: RecordingRunner,
) -> None:
    looked_up: list[str] = []

    def which(tool: str) -> str | None:
        looked_up.append(tool)
        return None

    # Nothing else about this configuration is valid either.
    config = RunConfiguration.from_environ(
        {"GUIX_BUILD_OPTIONS": "--no-substitutes"},
        source_dir=tmp_path / "missing",
    )

    with pytest.raises(ConfigurationError) as excinfo:
        run_preflight(config, runner=recording_runner, which=which)

    assert "GUIX_BUILD_OPTIONS" in str(excinfo.value)
    assert "ADDITIONAL_GUIX_COMMON_FLAGS" in str(excinfo.value)
    assert looked_up == []
    assert recording_runner.probes == 0


def test_missing_tools_are_listed() -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        check_tools(("git", "guix"), which=lambda tool: None if tool == "guix" else "/bin/git")

    assert excinfo.value.context["missing"] == "guix"


def test_detached_sigs_must_be_supplied(
    signing_config: RunConfiguration,
    recording_runner: RecordingRunner,
) -> None:
    config = replace(signing_config, detached_sigs_repo=None)

    with pytest.raises(ConfigurationError) as excinfo:
        run_preflight(config, runner=recording_runner, which=_present)

    assert "DETACHED_SIGS_REPO" in str(excinfo.value)


def test_dirty_detached_sigs_abort(
    signing_config: RunConfiguration,
    recording_runner: RecordingRunner,
) -> None:
    assert signing_config.detached_sigs_repo is not None
    (signing_config.detached_sigs_repo / "README.md").write_text("edited\n", encoding="utf-8")

    with pytest.raises(StateError) as excinfo:
        run_preflight(signing_config, runner=recording_runner, which=_present)

    assert "detached signatures" in str(excinfo.value)
    assert recording_runner.probes == 0


def test_dirty_detached_sigs_accepted_with_override(
    signing_config: RunConfiguration,
    recording_runner: RecordingRunner,
) -> None:
    assert signing_config.detached_sigs_repo is not None
    (signing_config.detached_sigs_repo / "README.md").write_text("edited\n", encoding="utf-8")
    config = replace(signing_config, force_dirty_detached_sigs=True)

    run_preflight(config, runner=recording_runner, which=_present)

    assert recording_runner.probes == 1


def test_detached_sigs_must_be_a_worktree(
    signing_config: RunConfiguration,
    tmp_path: Path,
) -> None:
    plain = tmp_path / "plain-sigs"
    plain.mkdir()
    config = replace(signing_config, detached_sigs_repo=plain, force_dirty_detached_sigs=True)

    with pytest.raises(StateError) as excinfo:
        check_detached_sigs_clean(config)

    assert "not a git worktree" in str(excinfo.value)


def test_dirty_source_worktree_aborts_unless_forced(
    signing_config: RunConfiguration,
    recording_runner: RecordingRunner,
) -> None:
    (signing_config.source_dir / "README.md").write_text("edited\n", encoding="utf-8")

    with pytest.raises(StateError):
        run_preflight(signing_config, runner=recording_runner, which=_present)

    forced = replace(signing_config, force_dirty_worktree=True)
    run_preflight(forced, runner=recording_runner, which=_present)


def test_existing_scratch_directories_are_all_listed(
    signing_config: RunConfiguration,
    recording_runner: RecordingRunner,
) -> None:
    stale = [build_paths(signing_config, target).distsrc for target in TARGETS[1:]]
    for path in stale:
        path.mkdir(parents=True)

    with pytest.raises(StateError) as excinfo:
        run_preflight(signing_config, runner=recording_runner, which=_present)

    message = str(excinfo.value)
    for path in stale:
        assert str(path) in message
    assert str(build_paths(signing_config, TARGETS[0]).distsrc) not in message
    assert recording_runner.executed == []


def test_missing_tarballs_list_every_target(signing_config: RunConfiguration) -> None:
    for target in ("x86_64-w64-mingw32", "arm64-apple-darwin"):
        build_paths(signing_config, target).codesigning_tarball.unlink()

    with pytest.raises(PreconditionError) as excinfo:
        check_codesigning_tarballs(signing_config)

    assert excinfo.value.context["targets"] == "x86_64-w64-mingw32 arm64-apple-darwin"
    assert "x86_64-apple-darwin:" not in str(excinfo.value)


def test_missing_tarballs_abort_before_invocation(
    signing_config: RunConfiguration,
    recording_runner: RecordingRunner,
) -> None:
    build_paths(signing_config, TARGETS[0]).codesigning_tarball.unlink()

    with pytest.raises(PreconditionError):
        run_preflight(signing_config, runner=recording_runner, which=_present)

    assert recording_runner.executed == []
    assert not signing_config.distsrc_base.exists()


def test_unreachable_daemon_suggests_restart(signing_config: RunConfiguration) -> None:
    runner = RecordingRunner(probe_returncode=1)

    with pytest.raises(SandboxUnavailableError) as excinfo:
        run_preflight(signing_config, runner=runner, which=_present)

    assert excinfo.value.hint is not None
    assert "guix-daemon" in excinfo.value.hint
    assert excinfo.value.code == "E_SANDBOX_UNAVAILABLE"


def test_scratch_check_passes_when_nothing_exists(signing_config: RunConfiguration) -> None:
    check_scratch_dirs_absent(signing_config)


def test_source_outside_git_aborts_before_scratch_base_is_created(
    signing_env: dict[str, str],
    recording_runner: RecordingRunner,
    tmp_path: Path,
) -> None:
    plain = tmp_path / "exported-source"
    plain.mkdir()
    # Version and timestamp are forced, so nothing else needs git for the source.
    config = config_from({**signing_env, "SOURCE_DIR": str(plain), "FORCE_DIRTY_WORKTREE": "1"})

    with pytest.raises(StateError) as excinfo:
        run_preflight(config, runner=recording_runner, which=_present)

    assert "source directory is not a git worktree" in str(excinfo.value)
    assert excinfo.value.context["path"] == str(plain.resolve())
    assert not config.distsrc_base.exists()
    assert recording_runner.probes == 0


def test_empty_conflicting_variable_is_ignored() -> None:
    check_conflicting_environ({"GUIX_BUILD_OPTIONS": ""})

    with pytest.raises(ConfigurationError) as excinfo:
        check_conflicting_environ({"GUIX_BUILD_OPTIONS": "--no-grafts", "JOBS": "abc"})

    assert excinfo.value.context["value"] == "--no-grafts"
