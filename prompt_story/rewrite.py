"""
Carry notes across history rewrites.

``git commit --amend`` and ``git rebase`` hand the post-rewrite hook one
``<old-sha> <new-sha>`` pair per line. Every new commit receives the merge
of its old commits' notes, so squashing keeps every session.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .exceptions import PromptStoryError
from .notes import NoteStore, merge_notes

logger = logging.getLogger(__name__)


def parse_mappings(lines: Iterable[str]) -> dict[str, list[str]]:
    """Group rewrite pairs by new commit, keeping the old commits in order."""
    new_to_old: dict[str, list[str]] = {}
    for line in lines:
        parts = line.split()
        if len(parts) < 2:
            continue
        old, new = parts[0], parts[1]
        new_to_old.setdefault(new, []).append(old)
    return new_to_old


def transfer_notes(notes: NoteStore, lines: Iterable[str]) -> dict[str, int]:
    """
    Attach the merged notes of rewritten commits to their replacements.

    Old commits without a note, or with a malformed one, are skipped. A
    failure on one new commit is logged and the rest still transfer.

    Returns:
        New commit id to number of sessions in its transferred note
    """
    transferred = {}
    for new, olds in parse_mappings(lines).items():
        found = [note for note in (notes.get(old) for old in olds) if note is not None]
        merged = merge_notes(found)
        if merged is None:
            continue
        try:
            notes.put(new, merged)
        except PromptStoryError as e:
            logger.warning("Could not transfer notes to %s: %s", new[:7], e)
            continue
        logger.info("Transferred note to %s (%d sessions)", new[:7], len(merged.sessions))
        transferred[new] = len(merged.sessions)
    return transferred
