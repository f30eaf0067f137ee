from __future__ import annotations

from ..extensions import db
from safeledger.time_utils import to_iso_date, to_utc_z


CLOSEOUT_STATUS_DRAFT = "draft"
CLOSEOUT_STATUS_PASS = "pass"
CLOSEOUT_STATUS_WARN = "warn"
CLOSEOUT_STATUS_FAIL = "fail"
CLOSEOUT_STATUS_LOCKED = "locked"
CLOSEOUT_STATUSES = (
    CLOSEOUT_STATUS_DRAFT,
    CLOSEOUT_STATUS_PASS,
    CLOSEOUT_STATUS_WARN,
    CLOSEOUT_STATUS_FAIL,
    CLOSEOUT_STATUS_LOCKED,
)

PHOTO_TYPE_DEPOSIT_REQUIRED = "deposit_required"
PHOTO_TYPE_POS_OPTIONAL = "pos_optional"
PHOTO_TYPES = (PHOTO_TYPE_DEPOSIT_REQUIRED, PHOTO_TYPE_POS_OPTIONAL)


class SafeCloseout(db.Model):
    """
    End-of-day safe reconciliation for one store and business date.

    WHY: Grades the deposited cash against cash sales minus paid-out
    expenses, and holds the record until a manager signs it off.

    LIFECYCLE:
    - DRAFT: saved without grading (draft save, or first submission in flight)
    - PASS / WARN / FAIL: re-derived on every submission while unlocked
    - LOCKED: manager reviewed; terminal, never regresses

    IMMUTABLE: Once locked, figures change only through the override path,
    which stamps edited_at / edited_by / edit_reason.
    """
    __tablename__ = "safe_closeouts"
    __table_args__ = (
        db.UniqueConstraint("store_id", "business_date", name="uq_safe_closeouts_store_date"),
        db.CheckConstraint(
            "status IN ('draft', 'pass', 'warn', 'fail', 'locked')",
            name="ck_safe_closeouts_status",
        ),
        db.CheckConstraint("validation_attempts >= 0", name="ck_safe_closeouts_attempts"),
        db.Index("ix_safe_closeouts_store_date", "store_id", "business_date"),
        db.Index("ix_safe_closeouts_status_review", "status", "requires_manager_review", "business_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    business_date = db.Column(db.Date, nullable=False)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True)
    profile_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)  # Submitting employee

    status = db.Column(db.String(16), nullable=False, default=CLOSEOUT_STATUS_DRAFT, index=True)

    # Sales (cents)
    cash_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    card_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    other_sales_cents = db.Column(db.Integer, nullable=False, default=0)

    # Deposit (cents). expected may be negative: expenses exceeded cash sales.
    expected_deposit_cents = db.Column(db.Integer, nullable=False, default=0)
    actual_deposit_cents = db.Column(db.Integer, nullable=False, default=0)
    denom_total_cents = db.Column(db.Integer, nullable=False, default=0)
    drawer_count_cents = db.Column(db.Integer, nullable=True)
    variance_cents = db.Column(db.Integer, nullable=False, default=0)  # actual - expected
    denom_variance_cents = db.Column(db.Integer, nullable=False, default=0)  # denom total - actual

    denominations = db.Column(db.JSON, nullable=False, default=dict)
    deposit_override_reason = db.Column(db.Text, nullable=True)

    validation_attempts = db.Column(db.Integer, nullable=False, default=0)
    requires_manager_review = db.Column(db.Boolean, nullable=False, default=False)

    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    edited_at = db.Column(db.DateTime(timezone=True), nullable=True)
    edited_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    edit_reason = db.Column(db.Text, nullable=True)

    is_historical_backfill = db.Column(db.Boolean, nullable=False, default=False, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store", backref=db.backref("safe_closeouts", lazy=True))
    shift = db.relationship("Shift", backref=db.backref("safe_closeouts", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_locked(self) -> bool:
        return self.status == CLOSEOUT_STATUS_LOCKED

    @property
    def expense_total_cents(self) -> int:
        return sum(expense.amount_cents for expense in self.expenses)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "business_date": to_iso_date(self.business_date),
            "shift_id": self.shift_id,
            "profile_id": self.profile_id,
            "status": self.status,
            "cash_sales_cents": self.cash_sales_cents,
            "card_sales_cents": self.card_sales_cents,
            "other_sales_cents": self.other_sales_cents,
            "expected_deposit_cents": self.expected_deposit_cents,
            "actual_deposit_cents": self.actual_deposit_cents,
            "denom_total_cents": self.denom_total_cents,
            "drawer_count_cents": self.drawer_count_cents,
            "variance_cents": self.variance_cents,
            "denom_variance_cents": self.denom_variance_cents,
            "denominations": dict(self.denominations or {}),
            "deposit_override_reason": self.deposit_override_reason,
            "validation_attempts": self.validation_attempts,
            "requires_manager_review": self.requires_manager_review,
            "reviewed_at": to_utc_z(self.reviewed_at) if self.reviewed_at else None,
            "reviewed_by": self.reviewed_by,
            "edited_at": to_utc_z(self.edited_at) if self.edited_at else None,
            "edited_by": self.edited_by,
            "edit_reason": self.edit_reason,
            "is_historical_backfill": self.is_historical_backfill,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class SafeCloseoutExpense(db.Model):
    """
    Cash paid out of the day's takings (supplies, petty cash).

    The lines on a closeout are the expense set of its latest submission:
    a submission or draft save that carries an expense list replaces them.
    Each line is subtracted from cash sales for the expected deposit.
    """
    __tablename__ = "safe_closeout_expenses"
    __table_args__ = (
        db.CheckConstraint("amount_cents >= 0", name="ck_safe_closeout_expenses_amount"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    closeout_id = db.Column(db.Integer, db.ForeignKey("safe_closeouts.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    category = db.Column(db.String(64), nullable=False)
    note = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    closeout = db.relationship(
        "SafeCloseout",
        backref=db.backref(
            "expenses",
            lazy=True,
            order_by="SafeCloseoutExpense.id",
            cascade="all, delete-orphan",
        ),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "closeout_id": self.closeout_id,
            "amount_cents": self.amount_cents,
            "category": self.category,
            "note": self.note,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class SafeCloseoutPhoto(db.Model):
    """
    Photographic evidence attached to a closeout.

    Retained until purge_after, then removed (row and stored objects) by the
    monthly sweep.
    """
    __tablename__ = "safe_closeout_photos"
    __table_args__ = (
        db.CheckConstraint(
            "photo_type IN ('deposit_required', 'pos_optional')",
            name="ck_safe_closeout_photos_type",
        ),
        db.Index("ix_safe_closeout_photos_purge", "purge_after"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    closeout_id = db.Column(db.Integer, db.ForeignKey("safe_closeouts.id"), nullable=False, index=True)
    photo_type = db.Column(db.String(32), nullable=False)
    storage_path = db.Column(db.String(512), nullable=False)
    thumb_path = db.Column(db.String(512), nullable=True)
    purge_after = db.Column(db.DateTime(timezone=True), nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    closeout = db.relationship(
        "SafeCloseout",
        backref=db.backref("photos", lazy=True, order_by="SafeCloseoutPhoto.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "closeout_id": self.closeout_id,
            "photo_type": self.photo_type,
            "storage_path": self.storage_path,
            "thumb_path": self.thumb_path,
            "purge_after": to_utc_z(self.purge_after),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class SafePickup(db.Model):
    """
    Cash removed from the store safe by an owner or manager.

    WHY: The safe accumulates each day's cash sales less paid-out expenses.
    Pickups take cash back out, so the running safe balance through a date
    is closeout cash sales - closeout expenses - pickups.

    IMMUTABLE: Recorded once, never edited.
    """
    __tablename__ = "safe_pickups"
    __table_args__ = (
        db.CheckConstraint("amount_cents >= 0", name="ck_safe_pickups_amount"),
        db.Index("ix_safe_pickups_store_date", "store_id", "pickup_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    pickup_date = db.Column(db.Date, nullable=False)
    pickup_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    note = db.Column(db.Text, nullable=True)
    recorded_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("safe_pickups", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "pickup_date": to_iso_date(self.pickup_date),
            "pickup_at": to_utc_z(self.pickup_at),
            "amount_cents": self.amount_cents,
            "note": self.note,
            "recorded_by": self.recorded_by,
            "created_at": to_utc_z(self.created_at),
        }
