"""
Study Buddy Matchmaker - Report Archive Service

Copies reports from the shared store's append-only reports list into the
SQL archive. The list is only ever read; progress is tracked by the
highest archived sequence number in the archive itself.
"""

import logging

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from study_buddy.models.report import ArchivedReport
from study_buddy.store.base import SharedStore

logger = logging.getLogger(__name__)


class ReportArchiveService:
    """
    Service for archiving reports.
    
    Reads the next batch past the high-water mark, inserts it in one
    transaction, and leaves the mark unchanged if the transaction fails so
    the same batch is retried on the next run.
    """
    
    def __init__(self, db: Session, store: SharedStore):
        self.db = db
        self.store = store

    def high_water_mark(self) -> int:
        """Sequence number of the next report to archive"""
        last = self.db.query(func.max(ArchivedReport.sequence)).scalar()
        return 0 if last is None else last + 1
    
    async def archive_batch(self, batch_size: int) -> dict:
        """
        Archive a batch of new reports.
        
        Args:
            batch_size: Maximum number of reports to copy
            
        Returns:
            Dictionary with processing results
        """
        start = self.high_water_mark()
        reports = await self.store.read_reports(start, batch_size)
        
        if not reports:
            return {
                "processed": 0,
                "archived": 0,
                "failed": 0,
            }
        
        rows = [ArchivedReport.from_report(start + offset, report) for offset, report in enumerate(reports)]
        for row in rows:
            if not row.is_complete:
                logger.warning("Report #%d is missing session or reason; archived raw", row.sequence)
        
        try:
            self.db.add_all(rows)
            self.db.commit()
        except SQLAlchemyError as e:
            # A concurrent archiver may have taken the same sequence numbers
            self.db.rollback()
            logger.error("Report archive write failed for #%d-#%d: %s", start, start + len(rows) - 1, e)
            return {
                "processed": len(rows),
                "archived": 0,
                "failed": len(rows),
            }
        
        logger.info("Archived reports #%d-#%d", start, start + len(rows) - 1)
        return {
            "processed": len(rows),
            "archived": len(rows),
            "failed": 0,
        }
    
    def archived_count(self) -> int:
        return self.db.query(ArchivedReport).count()

    async def pending_count(self) -> int:
        return max(0, await self.store.report_count() - self.high_water_mark())
