from __future__ import annotations

from ..extensions import db
from safeledger.time_utils import to_iso_date, to_utc_z


SOURCE_OPENER = "opener"
SOURCE_CLOSER = "closer"
ROLLOVER_SOURCES = (SOURCE_OPENER, SOURCE_CLOSER)

DAY_STATUS_PENDING = "pending"
DAY_STATUS_MATCHED = "matched"
DAY_STATUS_MISMATCH_SAVED = "mismatch_saved"
DAY_FINAL_STATUSES = (DAY_STATUS_MATCHED, DAY_STATUS_MISMATCH_SAVED)


class RolloverDay(db.Model):
    """
    Blind dual-entry rollover pair for one store and business date.

    WHY: The closing and opening staff each report the sales carried over
    the night without seeing the other figure. This row is the serialization
    point for both submissions (locked for update, unique per store/date).

    LIFECYCLE:
    - PENDING: zero or one side reported
    - MATCHED: both sides agree; agreed_cents carries into the next day
    - MISMATCH_SAVED: both sides retained, flagged for manager review

    IMMUTABLE: Once MATCHED or MISMATCH_SAVED, entries never change.
    """
    __tablename__ = "rollover_days"
    __table_args__ = (
        db.UniqueConstraint("store_id", "business_date", name="uq_rollover_days_store_date"),
        db.CheckConstraint(
            "status IN ('pending', 'matched', 'mismatch_saved')",
            name="ck_rollover_days_status",
        ),
        db.Index("ix_rollover_days_store_date", "store_id", "business_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    business_date = db.Column(db.Date, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=DAY_STATUS_PENDING, index=True)

    agreed_cents = db.Column(db.Integer, nullable=True)  # Set only when MATCHED
    carried_in_cents = db.Column(db.Integer, nullable=False, default=0)  # Previous day's agreed figure

    needs_review = db.Column(db.Boolean, nullable=False, default=False)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    review_note = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store", backref=db.backref("rollover_days", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_final(self) -> bool:
        return self.status in DAY_FINAL_STATUSES

    def entry_for(self, source: str) -> "RolloverEntry | None":
        for entry in self.entries:
            if entry.source == source:
                return entry
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "business_date": to_iso_date(self.business_date),
            "status": self.status,
            "agreed_cents": self.agreed_cents,
            "carried_in_cents": self.carried_in_cents,
            "needs_review": self.needs_review,
            "reviewed_at": to_utc_z(self.reviewed_at) if self.reviewed_at else None,
            "reviewed_by": self.reviewed_by,
            "review_note": self.review_note,
            "entries": [entry.to_dict() for entry in self.entries],
            "version_id": self.version_id,
        }


class RolloverEntry(db.Model):
    """
    One side's reported rollover amount.

    At most one entry per (store, business_date, source); the unique
    constraint is the backstop against two concurrent writers for one side.
    """
    __tablename__ = "rollover_entries"
    __table_args__ = (
        db.UniqueConstraint("store_id", "business_date", "source", name="uq_rollover_entries_store_date_source"),
        db.CheckConstraint("source IN ('opener', 'closer')", name="ck_rollover_entries_source"),
        db.CheckConstraint("amount_cents >= 0", name="ck_rollover_entries_amount"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    rollover_day_id = db.Column(db.Integer, db.ForeignKey("rollover_days.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    business_date = db.Column(db.Date, nullable=False)
    source = db.Column(db.String(16), nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    mismatch = db.Column(db.Boolean, nullable=False, default=False)

    submitted_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    rollover_day = db.relationship(
        "RolloverDay",
        backref=db.backref("entries", lazy=True, order_by="RolloverEntry.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "business_date": to_iso_date(self.business_date),
            "source": self.source,
            "amount_cents": self.amount_cents,
            "mismatch": self.mismatch,
            "submitted_by": self.submitted_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }
