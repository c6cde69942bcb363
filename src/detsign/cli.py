"""Command line entry point.

Usage:
    detsign codesign
    detsign plan --format cbor --output plan.cbor
"""

from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import NoReturn

from detsign.backends.guix import GuixShellRunner
from detsign.codesign import codesign_targets
from detsign.config import RunConfiguration
from detsign.errors import DetsignError
from detsign.observability import StructuredLogger
from detsign.plan import build_plan
from detsign.validate import (
    check_conflicting_environ,
    check_conflicting_options,
    exposed_git_dirs,
    run_preflight,
)


def load_config(args: argparse.Namespace, environ: Mapping[str, str]) -> RunConfiguration:
    """Environment first, then command line overrides."""
    merged = dict(environ)
    if args.hosts:
        merged["HOSTS"] = " ".join(args.hosts)
    if args.jobs is not None:
        merged["JOBS"] = str(args.jobs)
    if args.detached_sigs is not None:
        merged["DETACHED_SIGS_REPO"] = str(args.detached_sigs)
    return RunConfiguration.from_environ(merged, source_dir=args.source_dir)


def cmd_codesign(
    args: argparse.Namespace,
    config: RunConfiguration,
    logger: StructuredLogger,
) -> int:
    runner = GuixShellRunner.from_config(config)
    preflight = run_preflight(config, runner=runner, logger=logger)
    report = codesign_targets(
        preflight.config,
        runner=runner,
        logger=logger,
        git_dirs=preflight.git_dirs,
    )
    report.raise_for_failure()
    logger.log(
        operation="codesign_complete",
        target=None,
        phase="codesign",
        message=f"Codesigned {len(report.results)} target(s).",
    )
    return 0


def cmd_plan(
    args: argparse.Namespace,
    config: RunConfiguration,
    logger: StructuredLogger,
) -> int:
    check_conflicting_options(config)
    resolved = config.resolve_revision()
    plan = build_plan(resolved, git_dirs=exposed_git_dirs(resolved))
    if args.format == "cbor":
        encoded = plan.to_cbor(args.output)
        if args.output is None:
            sys.stdout.buffer.write(encoded)
    else:
        text = plan.to_json(args.output)
        if args.output is None:
            sys.stdout.write(text)
    if args.output is not None:
        logger.log(
            operation="plan",
            target=None,
            phase="plan",
            message=f"Wrote plan for {len(plan.targets)} target(s) to {args.output}.",
        )
    return 0


class UsageErrorParser(argparse.ArgumentParser):
    """Report usage errors with exit status 1 like every other failure."""

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = UsageErrorParser(
        prog="detsign",
        description="Apply detached code signatures inside a reproducible guix container.",
    )
    parser.add_argument(
        "--source-dir",
        type=Path,
        default=Path.cwd(),
        help="Source worktree (default: current directory)",
    )
    parser.add_argument("--hosts", nargs="+", help="Targets to sign (overrides HOSTS)")
    parser.add_argument("--jobs", type=int, help="Job-count hint (overrides JOBS)")
    parser.add_argument(
        "--detached-sigs",
        type=Path,
        help="Detached signatures checkout (overrides DETACHED_SIGS_REPO)",
    )
    parser.add_argument("--log-json", type=Path, help="Also write structured logs here")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("codesign", help="Check preconditions and sign every target")

    plan_p = sub.add_parser("plan", help="Print the per-target invocations without running them")
    plan_p.add_argument("--format", choices=("json", "cbor"), default="json")
    plan_p.add_argument("--output", type=Path, help="Write the plan to a file")

    return parser


def main(argv: Sequence[str] | None = None, environ: Mapping[str, str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logger = StructuredLogger.to_stderr()
    commands = {"codesign": cmd_codesign, "plan": cmd_plan}
    try:
        source = os.environ if environ is None else environ
        check_conflicting_environ(source)
        config = load_config(args, source)
        return commands[args.command](args, config, logger)
    except DetsignError as exc:
        logger.log(
            operation=args.command,
            target=exc.context.get("target"),
            phase="error",
            level="error",
            message=str(exc),
            extra={"code": exc.code},
        )
        return exc.exit_status
    except KeyboardInterrupt:
        return 1
    finally:
        if args.log_json is not None:
            logger.to_json_lines(args.log_json)


if __name__ == "__main__":
    raise SystemExit(main())
