import io
import json
from pathlib import Path

from detsign.errors import (
    ConfigurationError,
    ErrorCode,
    InvocationError,
    PreconditionError,
    SandboxUnavailableError,
    StateError,
)
from detsign.observability import StructuredLogger


def test_error_codes_are_stable_and_machine_readable() -> None:
    errors = [
        ConfigurationError("bad input"),
        StateError("stale directories"),
        PreconditionError("missing tarball"),
        SandboxUnavailableError("daemon down"),
        InvocationError("sign failed"),
    ]
    assert [error.code for error in errors] == [
        ErrorCode.CONFIGURATION.value,
        ErrorCode.STATE.value,
        ErrorCode.PRECONDITION.value,
        ErrorCode.SANDBOX_UNAVAILABLE.value,
        ErrorCode.INVOCATION.value,
    ]
    assert {error.exit_status for error in errors} == {1}


def test_error_text_includes_hint_and_non_empty_context() -> None:
    error = StateError(
        "Build directories already exist.",
        hint="Remove them.",
        context={"operation": "preflight", "existing": "/tmp/a", "empty": ""},
    )

    text = str(error)

    assert text.splitlines()[0] == "Build directories already exist. (E_STATE)"
    assert "Hint: Remove them." in text
    assert "  existing: /tmp/a" in text
    assert "empty" not in text
    assert error.to_dict()["hint"] == "Remove them."
    assert error.to_dict()["message"] == "Build directories already exist."


def test_error_code_stays_on_the_first_line_of_a_listing() -> None:
    error = StateError("Build directories already exist:\n    /work/a\n    /work/b")

    lines = str(error).splitlines()

    assert lines == [
        "Build directories already exist: (E_STATE)",
        "    /work/a",
        "    /work/b",
    ]
    assert error.to_dict()["exit_status"] == 1


def test_logger_keeps_records_and_echoes_to_stream(tmp_path: Path) -> None:
    stream = io.StringIO()
    logger = StructuredLogger(stream=stream)

    logger.log(
        operation="codesign_target_start",
        target="x86_64-w64-mingw32",
        phase="codesign",
        message="Codesigning 27.0 for platform triple x86_64-w64-mingw32:",
        extra={"in build directory": "/work/distsrc"},
    )
    logger.log(operation="other", target=None, phase=None, message="boom", level="error")

    assert len(logger.records_for_target("x86_64-w64-mingw32")) == 1
    assert stream.getvalue().splitlines() == [
        "INFO: Codesigning 27.0 for platform triple x86_64-w64-mingw32:",
        "      ...in build directory: /work/distsrc",
        "ERR: boom",
    ]

    path = logger.to_json_lines(tmp_path / "logs" / "run.jsonl")
    lines = path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["operation"] for line in lines] == ["codesign_target_start", "other"]


def test_logger_without_stream_is_silent() -> None:
    logger = StructuredLogger()

    logger.log(operation="x", target=None, phase=None, message="quiet")

    assert logger.records[0]["message"] == "quiet"
