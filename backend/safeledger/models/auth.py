from __future__ import annotations

from ..extensions import db
from safeledger.time_utils import to_utc_z


class User(db.Model):
    """
    Staff or manager identity as resolved by the external identity service.

    WHY: Every count, review and lock must be attributable.
    The primary store_id is implicit managerial scope for managers.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("username", name="uq_users_username"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False, index=True)
    display_name = db.Column(db.String(128), nullable=True)

    # Store association (nullable for org-level users)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("users", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "display_name": self.display_name,
            "store_id": self.store_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class UserStoreManagerAccess(db.Model):
    """
    Per-user managerial access to additional stores.

    WHY: A manager remains affiliated to a primary store (User.store_id), but can
    be granted oversight on several stores and review their variances.
    """
    __tablename__ = "user_store_manager_access"
    __table_args__ = (
        db.UniqueConstraint("user_id", "store_id", name="uq_user_store_manager_access"),
        db.Index("ix_user_store_manager_access_user", "user_id"),
        db.Index("ix_user_store_manager_access_store", "store_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    granted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    granted_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", foreign_keys=[user_id], backref=db.backref("manager_store_access", lazy=True))
    store = db.relationship("Store", backref=db.backref("manager_user_access", lazy=True))
    granted_by = db.relationship("User", foreign_keys=[granted_by_user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "store_id": self.store_id,
            "granted_by_user_id": self.granted_by_user_id,
            "granted_at": to_utc_z(self.granted_at),
        }
