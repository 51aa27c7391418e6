from __future__ import annotations

from datetime import datetime
from flask_login import UserMixin
from sqlalchemy.orm import validates
from .extensions import db, login_manager

GIFT_SHARED_CHOICES = ("No", "Yes")

# Plant codes used on import -> label shown to staff.
GROUP_LABELS = {
    "snacks1": "Snacks Plant",
    "snacks2": "Snacks Plant",
    "swan": "Swan Plant",
    "dairies": "Dairies Plant",
}


def group_label(code: str | None) -> str | None:
    if code is None:
        return None
    return GROUP_LABELS.get(code, code)


def normalize_name(value) -> str:
    return str(value).strip().upper()


def fold_case(value) -> str:
    return str(value or "").casefold()


class Participant(UserMixin, db.Model):
    __tablename__ = "participants"

    id = db.Column(db.Integer, primary_key=True)
    external_id = db.Column(db.String(64), unique=True, nullable=False)
    display_name = db.Column(db.String(128), nullable=False, index=True)
    # Casefolded copy of display_name for case-insensitive search.
    search_name = db.Column(db.String(128), nullable=False, index=True)
    department = db.Column(db.String(128), nullable=False)
    group = db.Column(db.String(64), nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # --- Assignment ---
    has_spun = db.Column(db.Boolean, default=False, nullable=False)
    recipient_id = db.Column(db.Integer, db.ForeignKey("participants.id", ondelete="SET NULL"), nullable=True)
    recipient = db.relationship(
        "Participant",
        remote_side=[id],
        foreign_keys=[recipient_id],
        uselist=False,
        post_update=True,
    )
    # Copy of the recipient's group at assignment time.
    spin_result_group = db.Column(db.String(64), nullable=True)
    has_been_spun = db.Column(db.Boolean, default=False, nullable=False)

    gift_shared = db.Column(db.String(3), default="No", nullable=False)

    # Admin-granted allowance to see the existing result again.
    is_replayable = db.Column(db.Boolean, default=False, nullable=False)
    replays_remaining = db.Column(db.Integer, default=0, nullable=False)

    __table_args__ = (
        db.CheckConstraint("gift_shared IN ('No', 'Yes')", name="gift_shared_values"),
        db.CheckConstraint("replays_remaining >= 0", name="replays_remaining_positive"),
    )

    @validates("display_name")
    def _sync_search_name(self, key, value):
        self.search_name = fold_case(value)
        return value

    @property
    def spin_result(self) -> str | None:
        return self.recipient.display_name if self.recipient is not None else None

    @property
    def can_replay(self) -> bool:
        return bool(self.has_spun and self.is_replayable and self.replays_remaining > 0)

    @property
    def is_orphan(self) -> bool:
        return bool(self.has_spun and not self.has_been_spun)

    def to_dict(self) -> dict:
        recipient = self.recipient
        return {
            "id": self.id,
            "employeeId": self.external_id,
            "name": self.display_name,
            "department": self.department,
            "group": self.group,
            "hasSpun": self.has_spun,
            "spinResult": recipient.display_name if recipient else None,
            "spinResultDept": recipient.department if recipient else None,
            "spinResultGroup": self.spin_result_group,
            "hasBeenSpun": self.has_been_spun,
            "giftShared": self.gift_shared,
            "isReplayable": self.is_replayable,
            "replaysRemaining": self.replays_remaining,
        }

    def __repr__(self) -> str:
        return f"<Participant {self.external_id} {self.display_name!r} group={self.group}>"


class PreAssignment(db.Model):
    """
    Administrative override: spinner_id receives recipient_id on their spin,
    as long as the recipient is still unclaimed in the same group.
    """
    __tablename__ = "pre_assignments"
    id = db.Column(db.Integer, primary_key=True)

    spinner_id = db.Column(db.Integer, db.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False, unique=True)
    recipient_id = db.Column(db.Integer, db.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    spinner = db.relationship("Participant", foreign_keys=[spinner_id])
    recipient = db.relationship("Participant", foreign_keys=[recipient_id])

    __table_args__ = (
        db.CheckConstraint("spinner_id != recipient_id", name="no_self_pre_assignment"),
    )


@login_manager.user_loader
def load_user(user_id: str):
    return db.session.get(Participant, int(user_id))
