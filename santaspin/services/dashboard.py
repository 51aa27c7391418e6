from __future__ import annotations

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import aliased

from ..extensions import db
from ..models import Participant, fold_case
from ..store import count_participants

DEFAULT_PAGE_SIZE = 25


def get_stats() -> dict:
    total = count_participants()
    spun = count_participants(Participant.has_spun.is_(True))
    shared = count_participants(Participant.gift_shared == "Yes")
    return {
        "totalStaff": total,
        "spunCount": spun,
        "giftsShared": shared,
        "remaining": total - spun,
    }


def _search_clause(search: str, recipient):
    """
    Every word has to appear, case-insensitively, in the participant's name
    or in the recipient's name. Words are matched independently of order.
    """
    words = [fold_case(w) for w in search.split()]
    return and_(*[
        or_(
            Participant.search_name.contains(word, autoescape=True),
            recipient.search_name.contains(word, autoescape=True),
        )
        for word in words
    ])


def list_spun(page: int = 1, search: str = "", per_page: int = DEFAULT_PAGE_SIZE) -> dict:
    page = max(int(page or 1), 1)
    recipient = aliased(Participant)

    stmt = (
        select(Participant)
        .outerjoin(recipient, Participant.recipient_id == recipient.id)
        .where(Participant.has_spun.is_(True))
        .order_by(Participant.display_name.asc(), Participant.id.asc())
    )
    if search and search.strip():
        stmt = stmt.where(_search_clause(search.strip(), recipient))

    pagination = db.paginate(stmt, page=page, per_page=per_page, error_out=False, count=True)
    return {
        "staff": [p.to_dict() for p in pagination.items],
        "total": pagination.total,
        "pages": pagination.pages,
        "currentPage": page,
    }


def search_names(query: str, limit: int = 10) -> list[str]:
    query = (query or "").strip()
    if not query:
        return []
    rows = (
        Participant.query
        .filter(Participant.search_name.contains(fold_case(query), autoescape=True))
        .order_by(Participant.display_name.asc())
        .limit(limit)
        .all()
    )
    return [p.display_name for p in rows]


def list_departments() -> list[str]:
    rows = db.session.execute(
        select(Participant.department).distinct().order_by(Participant.department.asc())
    ).scalars()
    return list(rows)
