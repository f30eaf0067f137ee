from __future__ import annotations

from ..extensions import db
from safeledger.time_utils import to_utc_z


COUNT_TYPE_START = "start"
COUNT_TYPE_CHANGEOVER = "changeover"
COUNT_TYPE_END = "end"
COUNT_TYPES = (COUNT_TYPE_START, COUNT_TYPE_CHANGEOVER, COUNT_TYPE_END)


class Shift(db.Model):
    """
    Staff shift at a store.

    WHY: Drawer counts hang off a shift. Scheduling, clock rules and payroll
    live elsewhere; this row is only the reference the engine needs.
    """
    __tablename__ = "shifts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    started_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)

    store = db.relationship("Store", backref=db.backref("shifts", lazy=True))
    user = db.relationship("User", backref=db.backref("shifts", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "user_id": self.user_id,
            "started_at": to_utc_z(self.started_at),
            "ended_at": to_utc_z(self.ended_at) if self.ended_at else None,
        }


class DrawerCount(db.Model):
    """
    Cash drawer count taken at a shift checkpoint.

    LIFECYCLE:
    - Created at each checkpoint (start, changeover, end), graded against the
      store's expected drawer amount.
    - Out-of-threshold rows sit in the unreviewed queue until a manager reviews.

    IMMUTABLE: Only the review columns are ever written after insert, and
    reviewed_at is set at most once. Rows are never deleted.
    """
    __tablename__ = "drawer_counts"
    __table_args__ = (
        db.UniqueConstraint("shift_id", "count_type", name="uq_drawer_counts_shift_type"),
        db.CheckConstraint(
            "count_type IN ('start', 'changeover', 'end')",
            name="ck_drawer_counts_count_type",
        ),
        db.Index("ix_drawer_counts_needs_review", "out_of_threshold", "reviewed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)
    # Denormalized from the shift so the review queue filters without a join
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    count_type = db.Column(db.String(16), nullable=False)
    counted_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    # All amounts in cents
    drawer_cents = db.Column(db.Integer, nullable=False)
    expected_drawer_cents = db.Column(db.Integer, nullable=False)
    variance_cents = db.Column(db.Integer, nullable=False, default=0)  # drawer - expected

    confirmed = db.Column(db.Boolean, nullable=False, default=False)
    out_of_threshold = db.Column(db.Boolean, nullable=False, default=False)
    notified_manager = db.Column(db.Boolean, nullable=False, default=False)
    note = db.Column(db.Text, nullable=True)

    # Review (first review wins)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    review_note = db.Column(db.Text, nullable=True)

    shift = db.relationship("Shift", backref=db.backref("drawer_counts", lazy=True))
    store = db.relationship("Store")
    reviewer = db.relationship("User", foreign_keys=[reviewed_by])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "store_id": self.store_id,
            "count_type": self.count_type,
            "counted_at": to_utc_z(self.counted_at),
            "drawer_cents": self.drawer_cents,
            "expected_drawer_cents": self.expected_drawer_cents,
            "variance_cents": self.variance_cents,
            "confirmed": self.confirmed,
            "out_of_threshold": self.out_of_threshold,
            "notified_manager": self.notified_manager,
            "note": self.note,
            "reviewed_at": to_utc_z(self.reviewed_at) if self.reviewed_at else None,
            "reviewed_by": self.reviewed_by,
            "review_note": self.review_note,
        }
