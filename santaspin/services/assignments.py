from __future__ import annotations

import logging
import random
from dataclasses import dataclass

from flask import current_app

from ..errors import AlreadySpun, NoAvailableCandidates, NotFound, ValidationFailed
from ..models import Participant, PreAssignment, group_label
from ..notifications import Broadcaster, notify
from ..store import compare_and_set, lock_participant, query_participants, transactional

logger = logging.getLogger(__name__)

SPIN_COMPLETE = "spinComplete"
SPIN_REPLAY = "spinReplay"

_default_rng = random.Random()


def engine_rng() -> random.Random:
    """The app-wide random source; seeded when SANTA_RANDOM_SEED is set."""
    return current_app.extensions.get("santa_rng") or _default_rng


@dataclass(frozen=True)
class SpinResult:
    spinner_id: int
    spinner_name: str
    recipient_id: int
    recipient_name: str
    department: str
    group: str
    replay: bool = False
    replays_remaining: int = 0

    @property
    def group_label(self) -> str:
        return group_label(self.group)

    @property
    def event_name(self) -> str:
        return SPIN_REPLAY if self.replay else SPIN_COMPLETE

    def event_payload(self) -> dict:
        return {
            "spinnerId": self.spinner_id,
            "spinnerName": self.spinner_name,
            "recipientName": self.recipient_name,
            "recipientGroup": self.group,
        }

    def to_dict(self) -> dict:
        return {
            "spinResult": self.recipient_name,
            "spinResultDept": self.department,
            "spinResultGroup": self.group_label,
            "replay": self.replay,
            "replaysRemaining": self.replays_remaining,
        }


# --------- Candidate selection (pure) ----------

def candidate_tiers(spinner: Participant, pool: list[Participant]) -> list[tuple[str, list[Participant]]]:
    """
    Ranked candidate lists for `spinner`, best tier first.

    A: already spun, still unclaimed, other department
    B: already spun, still unclaimed, any department
    C: anyone still unclaimed
    Everything is restricted to the spinner's group and excludes the spinner.
    """
    eligible = [
        p for p in pool
        if p.id != spinner.id and p.group == spinner.group and not p.has_been_spun
    ]
    waiting = [p for p in eligible if p.has_spun]
    cross_department = [p for p in waiting if p.department != spinner.department]
    return [("A", cross_department), ("B", waiting), ("C", eligible)]


def choose_recipient(spinner: Participant, pool: list[Participant], rng: random.Random | None = None) -> Participant:
    rng = rng or _default_rng
    for tier, candidates in candidate_tiers(spinner, pool):
        if candidates:
            chosen = rng.choice(candidates)
            logger.debug(
                "Tier %s picked %s for %s out of %d candidates",
                tier, chosen.external_id, spinner.external_id, len(candidates),
            )
            return chosen
    raise NoAvailableCandidates(spinner.group)


def validate_pair(spinner: Participant, recipient: Participant) -> None:
    """Structural checks shared by manual assignment and pre-assignment."""
    if spinner.id == recipient.id:
        raise ValidationFailed("A participant cannot be assigned to themselves")
    if spinner.group != recipient.group:
        raise ValidationFailed(
            f"{spinner.display_name} ({spinner.group}) and {recipient.display_name} "
            f"({recipient.group}) are in different groups"
        )


# --------- Transaction pieces ----------

def claim(spinner: Participant, recipient: Participant) -> None:
    """
    Write both sides of an assignment. Each write is guarded so a racing spin
    that already took the spinner or the recipient raises StorageConflict.
    """
    compare_and_set(
        spinner.id,
        {"has_spun": False},
        {"has_spun": True, "recipient_id": recipient.id, "spin_result_group": recipient.group},
    )
    compare_and_set(
        recipient.id,
        {"has_been_spun": False, "group": spinner.group},
        {"has_been_spun": True},
    )


def _pre_assigned_recipient(spinner: Participant) -> Participant | None:
    pre = PreAssignment.query.filter_by(spinner_id=spinner.id).first()
    if pre is None:
        return None

    recipient = pre.recipient
    if (
        recipient is None
        or recipient.id == spinner.id
        or recipient.group != spinner.group
        or recipient.has_been_spun
    ):
        logger.warning(
            "Ignoring pre-assignment for %s: recipient %s is no longer available",
            spinner.external_id, recipient.external_id if recipient else None,
        )
        return None
    return recipient


def _replay(spinner: Participant) -> SpinResult:
    if not spinner.can_replay:
        raise AlreadySpun()

    recipient = spinner.recipient
    if recipient is None:
        raise NotFound("Assigned recipient for", spinner.external_id)

    remaining = spinner.replays_remaining - 1
    compare_and_set(
        spinner.id,
        {"has_spun": True, "replays_remaining": spinner.replays_remaining},
        {"replays_remaining": remaining},
    )
    # Department and group come from the recipient's current record.
    return SpinResult(
        spinner_id=spinner.id,
        spinner_name=spinner.display_name,
        recipient_id=recipient.id,
        recipient_name=recipient.display_name,
        department=recipient.department,
        group=recipient.group,
        replay=True,
        replays_remaining=remaining,
    )


@transactional
def _spin(participant_id: int, rng: random.Random | None) -> SpinResult:
    spinner = lock_participant(participant_id).first()
    if spinner is None:
        raise NotFound("Participant", participant_id)

    if spinner.has_spun:
        return _replay(spinner)

    recipient = _pre_assigned_recipient(spinner)
    if recipient is None:
        pool = query_participants(
            Participant.has_been_spun.is_(False),
            group=spinner.group,
            exclude_id=spinner.id,
        )
        recipient = choose_recipient(spinner, pool, rng)

    claim(spinner, recipient)

    return SpinResult(
        spinner_id=spinner.id,
        spinner_name=spinner.display_name,
        recipient_id=recipient.id,
        recipient_name=recipient.display_name,
        department=recipient.department,
        group=recipient.group,
    )


def spin(participant_id: int, *, rng: random.Random | None = None, notifier: Broadcaster | None = None) -> SpinResult:
    """
    Assign a recipient to `participant_id`, or replay the existing result when
    the participant still has a replay allowance.

    Raises NotFound, AlreadySpun, NoAvailableCandidates or StorageConflict;
    none of them leave a partial write behind.
    """
    result = _spin(participant_id, rng)

    if result.replay:
        logger.info(
            "Replay for %s -> %s (%d left)",
            result.spinner_name, result.recipient_name, result.replays_remaining,
        )
    else:
        logger.info("Spin %s -> %s (%s)", result.spinner_name, result.recipient_name, result.group)

    notify(notifier, result.event_name, result.event_payload())
    return result
