"""
Deduplication and allow-list filtering.

Pure functions over records: building the candidate list from a feed
snapshot, and choosing which candidates are eligible for publishing once the
store has been consulted.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from flashsync.core.types import FeedSnapshot, FlashRecord


def normalize_allow_list(actors: Iterable[str]) -> frozenset[str]:
    """Lower-cased, stripped allow-list; blank names are dropped."""
    return frozenset(a.strip().lower() for a in actors if a and a.strip())


def dedupe_by_id(records: Iterable[FlashRecord]) -> list[FlashRecord]:
    """Drop repeated ids, keeping the first occurrence and the input order."""
    seen: set[int] = set()
    unique: list[FlashRecord] = []
    for record in records:
        if record.id in seen:
            continue
        seen.add(record.id)
        unique.append(record)
    return unique


def merge_candidates(snapshot: FeedSnapshot, allow_list: Iterable[str]) -> list[FlashRecord]:
    """
    Merge one poll into a single candidate list.

    The unfiltered subset is taken as is; the filtered subset only contributes
    records whose actor is on the allow-list (case-insensitive). An empty
    allow-list means the filtered subset contributes nothing. Every candidate
    carries the snapshot fingerprint.
    """
    allowed = normalize_allow_list(allow_list)
    accepted = [r for r in snapshot.filtered if r.actor.strip().lower() in allowed]
    merged = [*snapshot.unfiltered, *accepted]
    return [r.with_fingerprint(snapshot.fingerprint) for r in dedupe_by_id(merged)]


@dataclass(frozen=True)
class Selection:
    """Outcome of the dedup stage for one candidate list."""

    new: list[FlashRecord]
    known: list[FlashRecord]
    eligible: list[FlashRecord]


def select_publish_eligible(candidates: Iterable[FlashRecord], existing: Iterable[FlashRecord]) -> Selection:
    """
    Split candidates into new/known and pick the ones to publish.

    Eligible = every new candidate, plus known candidates whose *stored* row
    still lacks an artifact reference. Known records are published
    in their stored form, so a record stored with an empty artifact reference
    is re-selected on every tick until the reference is filled in.

    Args:
        candidates: Merged, deduplicated candidates
        existing: Stored rows returned by the id lookup
    """
    stored = {record.id: record for record in existing}
    new: list[FlashRecord] = []
    known: list[FlashRecord] = []
    eligible: list[FlashRecord] = []

    for candidate in dedupe_by_id(candidates):
        row = stored.get(candidate.id)
        if row is None:
            new.append(candidate)
            eligible.append(candidate)
        else:
            known.append(row)
            if row.pending_delivery:
                eligible.append(row)

    return Selection(new=new, known=known, eligible=eligible)
