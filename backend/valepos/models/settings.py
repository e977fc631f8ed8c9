from __future__ import annotations

from ..extensions import db
from valepos.time_utils import to_utc_z


class SystemSetting(db.Model):
    """
    Key-value system configuration (stock and sale policies).

    value is stored as text and typed by value_type:
    string | number | boolean | json

    Read through services.config_service.ConfigurationProvider, which caches
    parsed values for a short TTL.
    """
    __tablename__ = "system_settings"
    __table_args__ = (
        db.UniqueConstraint("key", name="uq_system_settings_key"),
        db.Index("ix_system_settings_category", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    key = db.Column(db.String(128), nullable=False)
    value = db.Column(db.Text, nullable=True)
    value_type = db.Column(db.String(16), nullable=False, default="string")
    description = db.Column(db.String(255), nullable=True)
    category = db.Column(db.String(64), nullable=False, default="general")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "value": self.value,
            "value_type": self.value_type,
            "description": self.description,
            "category": self.category,
            "is_active": self.is_active,
            "updated_at": to_utc_z(self.updated_at),
        }
