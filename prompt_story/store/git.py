"""
Git-backed object store.

All git operations use subprocess calls to the git CLI plumbing
commands. No gitpython dependency required.
"""

from __future__ import annotations

import logging
import os
import subprocess
from datetime import datetime
from pathlib import Path

from ..exceptions import CommitResolutionError, ObjectStoreError, RefUpdateConflictError
from ..time_utils import parse_git_date
from .base import UNSET, EntryKind, ObjectStore, TreeEntry, _Unset

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 60


class GitObjectStore(ObjectStore):
    """Object store backed by a git repository.

    Args:
        cwd: Any directory inside the repository (default: current directory)
        env: Extra environment variables for every git invocation
    """

    def __init__(self, cwd: Path | str | None = None, env: dict[str, str] | None = None):
        self.cwd = Path(cwd) if cwd is not None else Path.cwd()
        self.env = env or {}

    def _git(
        self,
        args: list[str],
        operation: str,
        input: bytes | None = None,
        check: bool = True,
        timeout: int | None = None,
    ) -> subprocess.CompletedProcess:
        """Run git, raise ObjectStoreError on failure or timeout."""
        full_env = dict(os.environ)
        full_env.update(self.env)
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=str(self.cwd),
                input=input,
                capture_output=True,
                env=full_env,
                timeout=timeout or GIT_TIMEOUT_SECONDS,
            )
        except subprocess.TimeoutExpired as e:
            raise ObjectStoreError(operation, " ".join(args), e) from e
        except OSError as e:
            raise ObjectStoreError(operation, " ".join(args), e) from e
        if check and result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise ObjectStoreError(operation, " ".join(args), RuntimeError(stderr))
        return result

    def _out(self, args: list[str], operation: str, input: bytes | None = None) -> str:
        return self._git(args, operation, input=input).stdout.decode("utf-8").strip()

    # Repository locations

    def git_dir(self) -> Path:
        path = Path(self._out(["rev-parse", "--git-dir"], "git_dir"))
        return path if path.is_absolute() else (self.cwd / path).resolve()

    def repo_root(self) -> Path:
        return Path(self._out(["rev-parse", "--show-toplevel"], "repo_root"))

    # Objects

    def hash_blob(self, data: bytes) -> str:
        return self._out(["hash-object", "-w", "--stdin"], "hash_blob", input=data)

    def read_blob(self, oid: str) -> bytes:
        return self._git(["cat-file", "blob", oid], "read_blob").stdout

    def read_tree(self, oid: str) -> list[TreeEntry]:
        raw = self._git(["ls-tree", "-z", oid], "read_tree").stdout.decode("utf-8")
        entries = []
        for record in raw.split("\0"):
            if not record:
                continue
            header, _, name = record.partition("\t")
            fields = header.split()
            if len(fields) != 3 or not name:
                logger.warning("Skipping unparseable ls-tree record in %s: %r", oid, record)
                continue
            mode, kind, entry_oid = fields
            entries.append(TreeEntry(name=name, oid=entry_oid, kind=EntryKind(kind), mode=mode))
        return entries

    def create_tree(self, entries: list[TreeEntry]) -> str:
        payload = "".join(
            f"{e.mode} {e.kind.value} {e.oid}\t{e.name}\0" for e in entries
        ).encode("utf-8")
        return self._out(["mktree", "-z"], "create_tree", input=payload)

    # Refs

    def get_ref(self, name: str) -> str | None:
        result = self._git(["rev-parse", "--verify", "-q", name], "get_ref", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.decode("utf-8").strip() or None

    def update_ref(self, name: str, oid: str, expected: str | None | _Unset = UNSET) -> None:
        args = ["update-ref", name, oid]
        if not isinstance(expected, _Unset):
            # An empty old value asserts the ref does not exist yet
            args.append(expected or "")
        result = self._git(args, "update_ref", check=False)
        if result.returncode == 0:
            logger.debug("Updated %s -> %s", name, oid[:12])
            return
        if not isinstance(expected, _Unset):
            actual = self.get_ref(name)
            if actual != expected:
                raise RefUpdateConflictError(name, expected, actual)
        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        raise ObjectStoreError("update_ref", name, RuntimeError(stderr))

    # Commits

    def resolve_commit(self, rev: str) -> str:
        result = self._git(
            ["rev-parse", "--verify", "-q", f"{rev}^{{commit}}"], "resolve_commit", check=False
        )
        sha = result.stdout.decode("utf-8").strip()
        if result.returncode != 0 or not sha:
            raise CommitResolutionError(rev)
        return sha

    def list_commits(self, range_spec: str) -> list[str]:
        result = self._git(["rev-list", range_spec], "list_commits", check=False)
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise CommitResolutionError(range_spec, stderr or None)
        return [line for line in result.stdout.decode("utf-8").splitlines() if line]

    def commit_timestamp(self, commit: str) -> datetime | None:
        result = self._git(["log", "-1", "--format=%aI", commit], "commit_timestamp", check=False)
        if result.returncode != 0:
            return None
        return parse_git_date(result.stdout.decode("utf-8"))

    def parent_commit(self, commit: str) -> str | None:
        result = self._git(
            ["rev-parse", "--verify", "-q", f"{commit}^"], "parent_commit", check=False
        )
        if result.returncode != 0:
            return None
        return result.stdout.decode("utf-8").strip() or None

    def commit_message(self, commit: str) -> str:
        return self._out(["log", "-1", "--format=%B", commit], "commit_message")

    # Notes

    def get_note(self, ref: str, commit: str) -> str | None:
        result = self._git(["notes", f"--ref={ref}", "show", commit], "get_note", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.decode("utf-8").strip() or None

    def set_note(self, ref: str, commit: str, text: str) -> None:
        self._git(
            ["notes", f"--ref={ref}", "add", "-f", "-F", "-", commit],
            "set_note",
            input=text.encode("utf-8"),
        )

    def list_noted_commits(self, ref: str) -> list[str]:
        result = self._git(["notes", f"--ref={ref}", "list"], "list_noted_commits", check=False)
        if result.returncode != 0:
            return []
        commits = []
        for line in result.stdout.decode("utf-8").splitlines():
            parts = line.split()
            if len(parts) == 2:
                commits.append(parts[1])
        return commits

    # Remotes

    def remote_ref(self, remote: str, ref: str) -> str | None:
        result = self._git(["ls-remote", remote, ref], "remote_ref", check=False)
        if result.returncode != 0:
            logger.debug("ls-remote %s %s failed; treating as absent", remote, ref)
            return None
        for line in result.stdout.decode("utf-8").splitlines():
            parts = line.split()
            if len(parts) == 2 and parts[1] == ref:
                return parts[0]
        return None

    def push_ref(self, remote: str, ref: str, force: bool = False) -> None:
        refspec = f"{'+' if force else ''}{ref}:{ref}"
        self._git(["push", remote, refspec], "push_ref", timeout=GIT_TIMEOUT_SECONDS * 5)
