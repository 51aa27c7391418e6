"""
Participant store: lookups, row locks and guarded writes over the
participants table.

Row locks use SELECT ... FOR UPDATE. Backends without row locking (SQLite)
ignore the clause and serialize writers instead; the compare-and-set writes
below still catch a lost race on either backend.
"""
from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Iterable

from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Query

from .errors import NotFound, SantaError, StorageConflict
from .extensions import db
from .models import Participant

logger = logging.getLogger(__name__)

_CONFLICT_MARKERS = ("locked", "deadlock", "could not serialize", "lock wait timeout")


def transactional(func):
    """
    Commit when the wrapped function returns, roll back and re-raise otherwise.

    The wrapped function must not commit by itself. Lock or serialization
    failures reported by the database surface as StorageConflict.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            result = func(*args, **kwargs)
            db.session.commit()
            return result
        except SantaError as e:
            db.session.rollback()
            logger.info("%s rejected: %s", func.__name__, e)
            raise
        except OperationalError as e:
            db.session.rollback()
            if any(marker in str(e.orig).lower() for marker in _CONFLICT_MARKERS):
                logger.warning("%s hit a concurrent write: %s", func.__name__, e.orig)
                raise StorageConflict() from e
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            raise
        except Exception as e:
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.session.rollback()
            raise

    return wrapper


# --------- Reads ----------

def get_participant(participant_id: int) -> Participant | None:
    return db.session.get(Participant, participant_id)


def require_participant(participant_id: int) -> Participant:
    participant = get_participant(participant_id)
    if participant is None:
        raise NotFound("Participant", participant_id)
    return participant


def find_by_external_id(external_id: str) -> Participant | None:
    return Participant.query.filter_by(external_id=str(external_id).strip()).first()


def require_by_external_id(external_id: str) -> Participant:
    participant = find_by_external_id(external_id)
    if participant is None:
        raise NotFound("Employee ID", str(external_id).strip())
    return participant


def find_by_display_name(display_name: str) -> list[Participant]:
    """Display names are not unique, so every match is returned."""
    name = str(display_name).strip().upper()
    return Participant.query.filter_by(display_name=name).order_by(Participant.id.asc()).all()


def query_participants(*criteria, group: str | None = None, exclude_id: int | None = None) -> list[Participant]:
    q = Participant.query.filter(*criteria)
    if group is not None:
        q = q.filter(Participant.group == group)
    if exclude_id is not None:
        q = q.filter(Participant.id != exclude_id)
    return q.order_by(Participant.id.asc()).all()


def count_participants(*criteria) -> int:
    return Participant.query.filter(*criteria).count()


# --------- Locks ----------

def lock_participant(participant_id: int) -> Query:
    """Row lock on one participant; call .first() inside a transaction."""
    return Participant.query.filter(Participant.id == participant_id).with_for_update(nowait=False)


def lock_participants(participant_ids: Iterable[int]) -> Query:
    return (
        Participant.query.filter(Participant.id.in_(list(participant_ids)))
        .order_by(Participant.id.asc())
        .with_for_update(nowait=False)
    )


def lock_orphans() -> Query:
    return (
        Participant.query.filter(Participant.has_spun.is_(True), Participant.has_been_spun.is_(False))
        .order_by(Participant.id.asc())
        .with_for_update(nowait=False)
    )


# --------- Writes ----------

def compare_and_set(participant_id: int, expected: dict[str, Any], patch: dict[str, Any]) -> None:
    """
    UPDATE participants SET <patch> WHERE id = :id AND <expected>.

    Raises StorageConflict when the row no longer matches `expected`. The
    caller's transaction decides whether anything is committed.
    """
    guards = [getattr(Participant, column) == value for column, value in expected.items()]
    stmt = (
        update(Participant)
        .where(Participant.id == participant_id, *guards)
        .values(**patch)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        logger.warning("Compare-and-set missed on participant %s (expected %s)", participant_id, expected)
        raise StorageConflict()


def atomic_update(participant_id: int, patch: dict[str, Any]) -> None:
    compare_and_set(participant_id, {}, patch)


def atomic_batch_update(updates: list[tuple[int, dict[str, Any]]]) -> int:
    """Apply every (id, patch) pair; all rows must exist. Commit is the caller's."""
    for participant_id, patch in updates:
        compare_and_set(participant_id, {}, patch)
    return len(updates)
