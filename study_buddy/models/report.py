"""
Study Buddy Matchmaker - Archived Report Model

SQLAlchemy model for the archived_reports table. Rows are copies of the
shared store's append-only reports list, kept for moderator review. The
list itself is never modified by archiving.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import Column, DateTime, Index, Integer, String, Text
from sqlalchemy.sql import func

from study_buddy.database import Base


class ArchivedReport(Base):
    """
    Archived abuse report.
    
    `sequence` is the report's position in the shared reports list; the
    highest archived sequence is the archive's high-water mark. The raw
    record is kept verbatim next to the extracted columns.
    """
    __tablename__ = "archived_reports"
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    sequence = Column(Integer, nullable=False, unique=True)
    report_id = Column(String(64), nullable=True, index=True)
    session_id = Column(String(64), nullable=True, index=True)
    reason = Column(Text, nullable=True)
    messages_json = Column(Text, nullable=False, default="[]")
    origin_ip = Column(String(64), nullable=True)
    reported_at = Column(DateTime, nullable=True)
    raw_json = Column(Text, nullable=False)
    archived_at = Column(DateTime, nullable=False, server_default=func.now(), index=True)
    
    __table_args__ = (
        Index('idx_reports_session_time', 'session_id', 'reported_at'),
    )

    @property
    def is_complete(self) -> bool:
        return bool(self.session_id and self.reason)

    @classmethod
    def from_report(cls, sequence: int, report: Any) -> "ArchivedReport":
        """Build a row from a stored report (camelCase keys); unusable fields become NULL"""
        fields: Dict[str, Any] = report if isinstance(report, dict) else {}
        messages = fields.get("messages")
        return cls(
            sequence=sequence,
            report_id=_text(fields.get("id")),
            session_id=_text(fields.get("sessionId")),
            reason=_text(fields.get("reason")),
            messages_json=json.dumps(messages if isinstance(messages, list) else []),
            origin_ip=_text(fields.get("ip")),
            reported_at=_from_epoch_ms(fields.get("timestamp")),
            raw_json=json.dumps(report),
        )


def _text(value: Any) -> Optional[str]:
    return str(value) if value not in (None, "") else None


def _from_epoch_ms(value: Any) -> Optional[datetime]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)
    except (OverflowError, OSError, ValueError):
        return None
