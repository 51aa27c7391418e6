"""
Repair pass for orphans: participants who spun but were never picked.

Orphans of one group are shuffled and joined into a single cycle, so each of
them ends up both giving and receiving exactly once. Recipients the orphans
held before the repair are released so later spins can pick them again.
"""
from __future__ import annotations

import logging
import random
from collections import defaultdict
from dataclasses import dataclass, field

from ..models import Participant
from ..notifications import Broadcaster, notify
from ..store import atomic_batch_update, lock_orphans, lock_participants, transactional

logger = logging.getLogger(__name__)

BATCH_REPAIRED = "batchRepaired"

_default_rng = random.Random()


@dataclass
class RepairReport:
    repaired: int = 0
    groups: dict[str, int] = field(default_factory=dict)
    released: int = 0
    # External ids of orphans left alone because they were alone in their group.
    skipped: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "count": self.repaired,
            "groups": dict(self.groups),
            "released": self.released,
            "skipped": list(self.skipped),
        }


def build_cycle(members: list[Participant], rng: random.Random | None = None) -> list[tuple[Participant, Participant]]:
    """
    Shuffle `members` and return (giver, receiver) pairs forming one cycle.

    Fewer than two members cannot form a cycle without a self-assignment, so
    no pairs are returned for them.
    """
    rng = rng or _default_rng
    order = list(members)
    if len(order) < 2:
        return []
    rng.shuffle(order)
    n = len(order)
    return [(order[i], order[(i + 1) % n]) for i in range(n)]


@transactional
def _repair(rng: random.Random | None) -> RepairReport:
    report = RepairReport()

    by_group: dict[str, list[Participant]] = defaultdict(list)
    for orphan in lock_orphans().all():
        by_group[orphan.group].append(orphan)

    updates: list[tuple[int, dict]] = []
    for group in sorted(by_group):
        members = by_group[group]
        if len(members) < 2:
            report.skipped.extend(m.external_id for m in members)
            logger.warning("Group %s has a single orphan (%s); leaving it unmatched", group, members[0].external_id)
            continue

        member_ids = {m.id for m in members}
        released_ids = sorted({
            m.recipient_id for m in members
            if m.recipient_id is not None and m.recipient_id not in member_ids
        })
        if released_ids:
            lock_participants(released_ids).all()
        for recipient_id in released_ids:
            updates.append((recipient_id, {"has_been_spun": False}))
        report.released += len(released_ids)

        for giver, receiver in build_cycle(members, rng):
            updates.append((giver.id, {
                "has_spun": True,
                "recipient_id": receiver.id,
                "spin_result_group": receiver.group,
                "has_been_spun": True,
            }))

        report.groups[group] = len(members)
        report.repaired += len(members)

    atomic_batch_update(updates)
    return report


def repair_unmatched(*, rng: random.Random | None = None, notifier: Broadcaster | None = None) -> RepairReport:
    report = _repair(rng)
    logger.info(
        "Repaired %d orphans across %d groups (%d recipients released, %d skipped)",
        report.repaired, len(report.groups), report.released, len(report.skipped),
    )
    notify(notifier, BATCH_REPAIRED, {"count": report.repaired})
    return report
