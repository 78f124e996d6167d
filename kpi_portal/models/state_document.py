"""
KPI Portal
State document table.

Models:
    - StateDocument: one row per logical state key, holding the serialised
      AppState and its optimistic-concurrency version.
"""

from datetime import datetime, timezone

from kpi_portal.models import db


class StateDocument(db.Model):
    """
    Persisted aggregate.

    The whole AppState is written in one UPDATE guarded by ``version``;
    there is no partial-write path.
    """

    __tablename__ = "state_documents"

    key = db.Column(db.String(100), primary_key=True)
    version = db.Column(db.Integer, nullable=False, default=0)
    payload = db.Column(db.Text, nullable=False, comment="JSON-serialised AppState")

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "key": self.key,
            "version": self.version,
            "size_bytes": len(self.payload or ""),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<StateDocument {self.key} v{self.version}>"
