"""Git queries used to derive the version, reference timestamp and tree state."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path

from detsign.errors import ConfigurationError


@dataclass(frozen=True, slots=True)
class GitRepo:
    path: Path

    def head_version(self) -> str:
        """Exact tag on HEAD without its ``v`` prefix, else the short commit id."""
        completed = self._git(["describe", "--exact-match", "HEAD"])
        if completed.returncode == 0:
            tag = completed.stdout.strip()
            return tag.removeprefix("v")
        return self._run(["rev-parse", "--short=12", "HEAD"])

    def last_commit_timestamp(self) -> int:
        output = self._run(["-c", "log.showSignature=false", "log", "--format=%at", "-1"])
        try:
            return int(output)
        except ValueError as exc:
            raise ConfigurationError(
                "Unable to read the last commit time.",
                hint="Set SOURCE_DATE_EPOCH explicitly.",
                context={"operation": "last_commit_timestamp", "path": str(self.path)},
            ) from exc

    def is_clean(self) -> bool:
        """True when tracked files match HEAD (untracked files are ignored)."""
        self._git(["update-index", "-q", "--refresh"])
        completed = self._git(["diff-index", "--quiet", "HEAD", "--"])
        if completed.returncode > 1:
            raise ConfigurationError(
                "Git command failed.",
                hint="Ensure the path is a git worktree with at least one commit.",
                context={
                    "operation": "is_clean",
                    "path": str(self.path),
                    "stderr": completed.stderr.strip(),
                },
            )
        return completed.returncode == 0

    def is_worktree(self) -> bool:
        completed = self._git(["rev-parse", "--is-inside-work-tree"])
        return completed.returncode == 0 and completed.stdout.strip() == "true"

    def common_dir(self) -> Path:
        common = Path(self._run(["rev-parse", "--git-common-dir"]))
        if not common.is_absolute():
            common = self.path / common
        return common.resolve()

    def _git(self, argv: list[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            ["git", *argv],
            cwd=self.path,
            check=False,
            text=True,
            capture_output=True,
        )

    def _run(self, argv: list[str]) -> str:
        completed = self._git(argv)
        if completed.returncode != 0:
            raise ConfigurationError(
                "Git command failed.",
                hint="Inspect the repository path and git installation.",
                context={
                    "operation": "git",
                    "path": str(self.path),
                    "argv": " ".join(["git", *argv]),
                    "stderr": completed.stderr.strip(),
                },
            )
        return completed.stdout.strip()
