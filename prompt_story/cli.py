"""
Command line interface.

Usage:
    prompt-story add [COMMIT|RANGE] [--force] [--dry-run] [--no-scrub]
    prompt-story repair [COMMIT|RANGE] [--scan] [--force] [--dry-run] [--no-scrub]
    prompt-story remove COMMIT|RANGE [--session ID]... [--ban] [--push] [--yes]
    prompt-story redact TOOL/SESSION@TIMESTAMP
    prompt-story ban ID [--tool TOOL] [--reason TEXT]
    prompt-story unban ID
    prompt-story banned
    prompt-story transfer-notes < mappings
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace

from . import __version__
from .config import PromptStoryConfig
from .exceptions import PromptStoryError
from .lifecycle import BatchReport, Outcome, PromptStory, run_batch
from .logging_utils import configure_logging, get_logger
from .rewrite import transfer_notes
from .store import GitObjectStore

logger = get_logger("cli")


def _print_outcome(outcome: Outcome) -> None:
    target = outcome.commit[:7] if outcome.commit else ", ".join(outcome.sessions)
    label = "dry-run" if outcome.dry_run else outcome.status.value
    print(f"{target}: {label} ({outcome.reason})")
    if outcome.summary and outcome.is_applied:
        print(f"  {outcome.summary}")


def _report(report: BatchReport) -> int:
    for outcome in report.outcomes:
        _print_outcome(outcome)
    if len(report.outcomes) > 1:
        print(report.summary())
    return 0 if report.ok else 1


def _confirm(question: str, default: bool = False) -> bool:
    """Ask a yes/no question; an empty answer takes ``default``, end of input says no."""
    try:
        answer = input(f"{question} {'[Y/n]' if default else '[y/N]'} ")
    except EOFError:
        return False
    answer = answer.strip().lower()
    if not answer:
        return default
    return answer in ("y", "yes")


def cmd_add(engine: PromptStory, args: argparse.Namespace) -> int:
    commits = engine.store.resolve_commits(args.commit)
    return _report(
        run_batch(commits, lambda sha: engine.add(sha, force=args.force, dry_run=args.dry_run))
    )


def cmd_repair(engine: PromptStory, args: argparse.Namespace) -> int:
    if args.scan:
        commits = engine.scan_commits_needing_notes(args.commit)
        if not commits:
            print("No commits need repair")
            return 0
    else:
        commits = engine.store.resolve_commits(args.commit or "HEAD")
    return _report(
        run_batch(commits, lambda sha: engine.repair(sha, force=args.force, dry_run=args.dry_run))
    )


def cmd_remove(engine: PromptStory, args: argparse.Namespace) -> int:
    infos = engine.sessions_in(args.commit)
    if not infos:
        print("No sessions referenced by these commits")
        return 0

    selected = args.session or list(infos)
    if not args.yes:
        for session_id in selected:
            info = infos.get(session_id)
            if info is not None:
                state = " (already removed)" if info.removed else ""
                print(f"  {info.tool}/{session_id} in {len(info.commits)} commit(s){state}")
        if not _confirm(f"Remove {len(selected)} session(s)?"):
            print("Aborted")
            return 0

    ban: bool | set[str] = args.ban
    if not args.ban and not args.yes:
        ban = {
            session_id
            for session_id in selected
            if session_id in infos
            and _confirm(f"Ban {infos[session_id].tool}/{session_id} from future captures?", default=True)
        }

    if args.push and not args.yes and engine.refs_on_remote():
        if not _confirm(f"Force-push rewritten refs to {engine.config.remote}?"):
            args.push = False

    outcomes = engine.remove(args.commit, session_ids=selected, ban=ban, push=args.push)
    for outcome in outcomes:
        _print_outcome(outcome)
    if not args.push and engine.refs_on_remote():
        print(f"Refs exist on {engine.config.remote}; rerun with --push to update them")
    return 0 if not any(o.is_failed for o in outcomes) else 1


def cmd_redact(engine: PromptStory, args: argparse.Namespace) -> int:
    _print_outcome(engine.redact(args.target, update_local=not args.no_local))
    return 0


def cmd_ban(engine: PromptStory, args: argparse.Namespace) -> int:
    _print_outcome(engine.ban(args.session_id, tool=args.tool, reason=args.reason))
    return 0


def cmd_unban(engine: PromptStory, args: argparse.Namespace) -> int:
    _print_outcome(engine.unban(args.session_id))
    return 0


def cmd_banned(engine: PromptStory, args: argparse.Namespace) -> int:
    entries = engine.require_ban_list().load()
    if not entries:
        print("No banned sessions")
    for entry in entries:
        reason = f"  {entry.reason}" if entry.reason else ""
        print(f"{entry.tool or '?'}/{entry.id}  {entry.banned_at.isoformat()}{reason}")
    return 0


def cmd_transfer_notes(engine: PromptStory, args: argparse.Namespace) -> int:
    transferred = transfer_notes(engine.notes, sys.stdin)
    for sha, count in transferred.items():
        print(f"Transferred note to {sha[:7]} ({count} sessions)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prompt-story",
        description="Link LLM session transcripts to git commits",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)")
    parser.add_argument("--json-logs", action="store_true", help="Log single-line JSON records")
    parser.add_argument("-C", dest="repo", default=None, help="Run in this repository")
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add", help="Attach sessions to a commit")
    add.add_argument("commit", nargs="?", default="HEAD", help="Commit or range (default: HEAD)")
    add.add_argument("--force", action="store_true", help="Overwrite an existing note")
    add.add_argument("--dry-run", action="store_true", help="Report without writing")
    add.add_argument("--no-scrub", action="store_true", help="Store transcripts unscrubbed")
    add.set_defaults(func=cmd_add)

    repair = sub.add_parser("repair", help="Recreate missing notes from local sessions")
    repair.add_argument("commit", nargs="?", default=None, help="Commit or range (default: HEAD)")
    repair.add_argument("--scan", action="store_true", help="Find marked commits that lack a note")
    repair.add_argument("--force", action="store_true", help="Overwrite an existing note")
    repair.add_argument("--dry-run", action="store_true", help="Report without writing")
    repair.add_argument("--no-scrub", action="store_true", help="Store transcripts unscrubbed")
    repair.set_defaults(func=cmd_repair)

    remove = sub.add_parser("remove", help="Remove sessions referenced by commits")
    remove.add_argument("commit", help="Commit or range")
    remove.add_argument("--session", action="append", help="Only this session (repeatable)")
    remove.add_argument("--ban", action="store_true", help="Also ban the removed sessions")
    remove.add_argument("--push", action="store_true", help="Force-push updated refs to the remote")
    remove.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    remove.set_defaults(func=cmd_remove)

    redact = sub.add_parser("redact", help="Redact one transcript record")
    redact.add_argument("target", help="<tool>/<session-id>@<timestamp>")
    redact.add_argument("--no-local", action="store_true", help="Leave the local session file alone")
    redact.set_defaults(func=cmd_redact)

    ban = sub.add_parser("ban", help="Never capture a session")
    ban.add_argument("session_id")
    ban.add_argument("--tool", default="", help="Tool the session belongs to")
    ban.add_argument("--reason", default="", help="Why the session is banned")
    ban.set_defaults(func=cmd_ban)

    unban = sub.add_parser("unban", help="Allow a banned session again")
    unban.add_argument("session_id")
    unban.set_defaults(func=cmd_unban)

    banned = sub.add_parser("banned", help="List banned sessions")
    banned.set_defaults(func=cmd_banned)

    transfer = sub.add_parser("transfer-notes", help="Carry notes over rewritten commits (stdin)")
    transfer.set_defaults(func=cmd_transfer_notes)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    level = {0: logging.WARNING, 1: logging.INFO}.get(args.verbose, logging.DEBUG)
    configure_logging(level=level, json_output=args.json_logs)

    try:
        store = GitObjectStore(cwd=args.repo)
        git_dir = store.git_dir()
        config = PromptStoryConfig.load(git_dir)
        if getattr(args, "no_scrub", False):
            config = replace(config, scrub_enabled=False)
        engine = PromptStory(store, config, repo_root=store.repo_root())
        return args.func(engine, args)
    except (PromptStoryError, ValueError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
