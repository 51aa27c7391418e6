from __future__ import annotations

import logging
import secrets

from ..errors import AlreadySpun, NotFound, ValidationFailed
from ..extensions import db
from ..models import GIFT_SHARED_CHOICES, Participant, PreAssignment, group_label, normalize_name
from ..notifications import Broadcaster, notify
from ..store import (
    compare_and_set,
    find_by_external_id,
    lock_participant,
    require_by_external_id,
    transactional,
)
from .assignments import SPIN_COMPLETE, claim, validate_pair

logger = logging.getLogger(__name__)


# --------- Identifiers ----------

def generate_external_id() -> str:
    """Random 8-digit numeric id not yet used by anyone."""
    while True:
        candidate = str(10_000_000 + secrets.randbelow(90_000_000))
        if find_by_external_id(candidate) is None:
            return candidate


@transactional
def generate_identifier(name: str, department: str, group: str) -> tuple[Participant, str]:
    """
    Give an identifier-less person a fresh employee id. An existing record with
    the same name and department is updated instead of duplicated.
    """
    name = normalize_name(name or "")
    department = (department or "").strip()
    group = (group or "").strip()
    if not name or not department or not group:
        raise ValidationFailed("Name, department, and group are required")

    new_id = generate_external_id()
    participant = Participant.query.filter_by(display_name=name, department=department).first()
    if participant is None:
        participant = Participant(display_name=name, department=department, group=group, external_id=new_id)
        db.session.add(participant)
    else:
        participant.group = group
        participant.external_id = new_id
    db.session.flush()

    logger.info("Generated id %s for %s (%s, %s)", new_id, name, department, group)
    return participant, new_id


@transactional
def change_external_id(current_id: str, new_id: str) -> Participant:
    new_id = (new_id or "").strip()
    if not new_id:
        raise ValidationFailed("New employee ID is required")

    participant = require_by_external_id(current_id)
    if participant.external_id == new_id:
        return participant
    if find_by_external_id(new_id) is not None:
        raise ValidationFailed(f"Employee ID {new_id} is already in use")

    logger.info("Changing employee ID %s -> %s (%s)", participant.external_id, new_id, participant.display_name)
    participant.external_id = new_id
    return participant


# --------- Lookups ----------

def lookup(external_id: str) -> dict:
    p = require_by_external_id(external_id)
    return {
        "id": p.id,
        "employeeId": p.external_id,
        "name": p.display_name,
        "department": p.department,
        "group": p.group,
        "groupLabel": group_label(p.group),
        "hasSpun": p.has_spun,
        "isReplayable": p.is_replayable,
        "replaysRemaining": p.replays_remaining,
        "canSpin": (not p.has_spun) or p.can_replay,
    }


def remind(external_id: str) -> dict:
    p = require_by_external_id(external_id)
    if not p.has_spun:
        raise ValidationFailed("You have not spun yet")

    recipient = p.recipient
    return {
        "spinResultName": recipient.display_name if recipient else None,
        "spinResultDept": recipient.department if recipient else "N/A",
        "spinResultGroup": group_label(p.spin_result_group),
    }


# --------- Resets ----------

def _reset_outgoing(participant: Participant) -> Participant | None:
    """
    Clear the participant's own assignment and release its recipient.

    The participant's has_been_spun flag is left as it is: whoever picked
    them keeps that pairing, so a reset only undoes the outgoing side.
    """
    recipient = participant.recipient
    compare_and_set(
        participant.id,
        {},
        {"has_spun": False, "recipient_id": None, "spin_result_group": None, "gift_shared": "No"},
    )
    if recipient is not None:
        compare_and_set(recipient.id, {}, {"has_been_spun": False})
    return recipient


@transactional
def reset_spin(participant_id: int) -> Participant | None:
    participant = lock_participant(participant_id).first()
    if participant is None:
        raise NotFound("Spinner", participant_id)
    recipient = _reset_outgoing(participant)
    logger.info(
        "Reset spin of %s (released %s)",
        participant.external_id, recipient.external_id if recipient else "nobody",
    )
    return recipient


def reset_participant(external_id: str) -> Participant | None:
    participant = require_by_external_id(external_id)
    return reset_spin(participant.id)


@transactional
def reset_all_recipient_flags() -> int:
    count = (
        Participant.query.filter(Participant.has_been_spun.is_(True))
        .update({"has_been_spun": False}, synchronize_session=False)
    )
    logger.warning("Cleared the recipient flag on %d participants", count)
    return count


# --------- Flags ----------

@transactional
def set_gift_shared(participant_id: int, status: str) -> Participant:
    status = (status or "").strip().capitalize()
    if status not in GIFT_SHARED_CHOICES:
        raise ValidationFailed(f"Gift status must be one of {', '.join(GIFT_SHARED_CHOICES)}")

    participant = db.session.get(Participant, participant_id)
    if participant is None:
        raise NotFound("Participant", participant_id)
    participant.gift_shared = status
    return participant


@transactional
def grant_replays(external_id: str, count: int) -> Participant:
    try:
        count = int(count)
    except (TypeError, ValueError) as e:
        raise ValidationFailed("Replay count must be a whole number") from e
    if count < 0:
        raise ValidationFailed("Replay count cannot be negative")

    participant = require_by_external_id(external_id)
    participant.is_replayable = count > 0
    participant.replays_remaining = count
    logger.info("Set %d replays for %s", count, participant.external_id)
    return participant


# --------- Manual matching ----------

@transactional
def _assign(spinner_ext: str, recipient_ext: str) -> tuple[Participant, Participant]:
    spinner = require_by_external_id(spinner_ext)
    recipient = require_by_external_id(recipient_ext)
    validate_pair(spinner, recipient)
    if spinner.has_spun:
        raise AlreadySpun(f"{spinner.display_name} has already spun")
    if recipient.has_been_spun:
        raise ValidationFailed(f"{recipient.display_name} has already been picked")

    claim(spinner, recipient)
    compare_and_set(spinner.id, {}, {"gift_shared": "No"})
    return spinner, recipient


def assign_directly(spinner_ext: str, recipient_ext: str, *, notifier: Broadcaster | None = None) -> tuple[Participant, Participant]:
    spinner, recipient = _assign(spinner_ext, recipient_ext)
    logger.info("Manual assignment %s -> %s", spinner.external_id, recipient.external_id)
    notify(notifier, SPIN_COMPLETE, {
        "spinnerId": spinner.id,
        "spinnerName": spinner.display_name,
        "recipientName": recipient.display_name,
        "recipientGroup": recipient.group,
    })
    return spinner, recipient


@transactional
def set_pre_assignment(spinner_ext: str, recipient_ext: str) -> PreAssignment:
    spinner = require_by_external_id(spinner_ext)
    recipient = require_by_external_id(recipient_ext)
    validate_pair(spinner, recipient)

    pre = PreAssignment.query.filter_by(spinner_id=spinner.id).first()
    if pre is None:
        pre = PreAssignment(spinner_id=spinner.id, recipient_id=recipient.id)
        db.session.add(pre)
    else:
        pre.recipient_id = recipient.id
    logger.info("Pre-assigned %s -> %s", spinner.external_id, recipient.external_id)
    return pre


@transactional
def clear_pre_assignment(spinner_ext: str) -> bool:
    spinner = require_by_external_id(spinner_ext)
    deleted = PreAssignment.query.filter_by(spinner_id=spinner.id).delete()
    return bool(deleted)


def list_pre_assignments() -> list[dict]:
    return [
        {
            "spinner": pre.spinner.external_id,
            "spinnerName": pre.spinner.display_name,
            "recipient": pre.recipient.external_id,
            "recipientName": pre.recipient.display_name,
        }
        for pre in PreAssignment.query.order_by(PreAssignment.id.asc()).all()
    ]
