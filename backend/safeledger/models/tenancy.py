from __future__ import annotations

from ..extensions import db
from safeledger.time_utils import to_utc_z


class Store(db.Model):
    """
    Retail location whose cash is reconciled.

    DESIGN: Stores are never deleted; inactive stores keep their history.
    expected_drawer_cents is the float every checkpoint count is graded against.
    """
    __tablename__ = "stores"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_stores_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=True, index=True)

    # Opening float every drawer count is compared against (cents)
    expected_drawer_cents = db.Column(db.Integer, nullable=False, default=20000)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Store id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "expected_drawer_cents": self.expected_drawer_cents,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class StoreReconciliationSettings(db.Model):
    """
    Per-store reconciliation thresholds.

    WHY: Owned by store configuration; the reconciliation engine only reads it.
    A store without a row resolves to the column defaults below.
    """
    __tablename__ = "store_reconciliation_settings"
    __table_args__ = (
        db.UniqueConstraint("store_id", name="uq_store_recon_settings_store"),
        db.CheckConstraint("deposit_tolerance_cents >= 0", name="ck_store_recon_deposit_tolerance"),
        db.CheckConstraint("denom_tolerance_cents >= 0", name="ck_store_recon_denom_tolerance"),
        db.CheckConstraint("photo_retention_days >= 0", name="ck_store_recon_retention"),
        db.CheckConstraint(
            "photo_purge_day_of_month BETWEEN 1 AND 28",
            name="ck_store_recon_purge_day",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    ledger_enabled = db.Column(db.Boolean, nullable=False, default=False)
    deposit_tolerance_cents = db.Column(db.Integer, nullable=False, default=100)
    denom_tolerance_cents = db.Column(db.Integer, nullable=False, default=0)
    photo_retention_days = db.Column(db.Integer, nullable=False, default=38)
    photo_purge_day_of_month = db.Column(db.Integer, nullable=False, default=8)

    # Blind dual-entry rollover toggle
    rollover_enabled = db.Column(db.Boolean, nullable=False, default=True)
    # When true a `warn` closeout always goes to a manager
    warn_requires_review = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store", backref=db.backref("reconciliation_settings", uselist=False, lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "store_id": self.store_id,
            "ledger_enabled": self.ledger_enabled,
            "deposit_tolerance_cents": self.deposit_tolerance_cents,
            "denom_tolerance_cents": self.denom_tolerance_cents,
            "photo_retention_days": self.photo_retention_days,
            "photo_purge_day_of_month": self.photo_purge_day_of_month,
            "rollover_enabled": self.rollover_enabled,
            "warn_requires_review": self.warn_requires_review,
            "updated_at": to_utc_z(self.updated_at),
        }
