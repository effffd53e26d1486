"""Cursor state and UID partitioning for one mailbox.

What:
  Model the persisted position ``(uid_validity, last_seen_uid)`` as an
  immutable value, split the server UIDs into already-seen and new ones, and
  bound the work of a pass.

Why:
  The cursor is the only thing that stops a pass from re-ingesting the whole
  mailbox. Keeping it a frozen value owned by the pass makes every transition
  explicit: epoch validation, advancing over ingestion results, and the single
  write back at the end.

How:
  :class:`Cursor` exposes :meth:`Cursor.validate` for the epoch check and
  :meth:`Cursor.advance`, a fold over ingestion results that stops at the
  first failure. :func:`partition_uids` and :func:`select_batches` are pure
  functions; sampling takes an injectable :class:`random.Random`.

Interfaces:
  :class:`Cursor`, :func:`partition_uids`, :func:`select_batches`.

Invariants & Safety:
  - ``last_seen_uid`` never decreases while ``uid_validity`` is unchanged.
  - ``last_seen_uid`` of ``0`` means "never synchronized": every UID is new.
  - ``advance`` never moves past a failed UID.
"""
from __future__ import annotations

import random
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence, Tuple

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .receiver import IngestResult

DEFAULT_OLD_SAMPLE_SIZE = 500
DEFAULT_NEW_BATCH_SIZE = 51


@dataclass(frozen=True)
class Cursor:
    """Position of a pass inside one mailbox epoch."""

    uid_validity: int = 0
    last_seen_uid: int = 0

    def matches(self, uid_validity: int) -> bool:
        return self.uid_validity == uid_validity

    def validate(self, uid_validity: int) -> "Cursor":
        """Return the cursor to use against a server reporting ``uid_validity``.

        A different epoch invalidates every UID seen so far, so the position
        restarts at ``0`` under the new epoch.
        """

        if self.matches(uid_validity):
            return self
        return Cursor(uid_validity=uid_validity, last_seen_uid=0)

    def advance(self, results: Iterable["IngestResult"]) -> "Cursor":
        """Fold ingestion results into a new position.

        What:
          Moves ``last_seen_uid`` to the highest UID of the contiguous run of
          successful results.

        Why:
          A failed message must be retried on the next pass; jumping over it
          would lose it forever.

        How:
          Iterate results in ascending UID order and stop at the first
          failure. UIDs at or below the current position never move it back.

        Args:
          results: Outcomes of one ingestion batch.

        Returns:
          The advanced cursor, ``self`` when nothing moved.
        """

        position = self.last_seen_uid
        for result in sorted(results, key=lambda item: item.uid):
            if not result.ok:
                break
            position = max(position, result.uid)
        if position == self.last_seen_uid:
            return self
        return replace(self, last_seen_uid=position)


def partition_uids(uids: Iterable[int], last_seen_uid: int) -> Tuple[List[int], List[int]]:
    """Split ``uids`` into ``(old, new)`` around ``last_seen_uid``.

    ``uid == last_seen_uid`` counts as old. With ``last_seen_uid == 0`` every
    UID is new. Both lists come back in ascending order.
    """

    ordered = sorted(set(int(uid) for uid in uids))
    if last_seen_uid <= 0:
        return [], ordered
    old = [uid for uid in ordered if uid <= last_seen_uid]
    new = [uid for uid in ordered if uid > last_seen_uid]
    return old, new


def select_batches(
    old: Sequence[int],
    new: Sequence[int],
    *,
    old_sample_size: int = DEFAULT_OLD_SAMPLE_SIZE,
    new_batch_size: int = DEFAULT_NEW_BATCH_SIZE,
    rng: Optional[random.Random] = None,
) -> Tuple[List[int], List[int]]:
    """Bound the work of one pass.

    Returns a uniform sample without replacement of at most
    ``old_sample_size`` old UIDs (ascending) and the lowest
    ``new_batch_size`` new UIDs (ascending).
    """

    generator = rng or random.Random()
    sample_size = min(old_sample_size, len(old))
    sampled = sorted(generator.sample(list(old), sample_size)) if sample_size else []
    batch = sorted(new)[:new_batch_size]
    return sampled, batch
