"""
Study Buddy Matchmaker - Report Archive Routes

Copies submitted reports from the shared store into the SQL archive.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from study_buddy.dependencies import get_db, get_services
from study_buddy.errors import BackendUnavailable
from study_buddy.services.container import Services
from study_buddy.services.report_archive import ReportArchiveService

router = APIRouter()


@router.post("/run")
async def archive_reports(db: Session = Depends(get_db), services: Services = Depends(get_services)):
    """
    Manually trigger report archiving.
    
    Copies reports past the archive's high-water mark into the database.
    The shared store's reports list is left as it is.
    """
    try:
        archive_service = ReportArchiveService(db, services.store)
        result = await archive_service.archive_batch(services.settings.ARCHIVE_BATCH_SIZE)
        return {
            "success": True,
            "processed": result["processed"],
            "archived": result["archived"],
            "failed": result["failed"],
        }
    except BackendUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/status")
async def archive_status(db: Session = Depends(get_db), services: Services = Depends(get_services)):
    """Get current archive status and pending report count"""
    try:
        archive_service = ReportArchiveService(db, services.store)
        return {
            "total_reports": await services.store.report_count(),
            "pending_reports": await archive_service.pending_count(),
            "archived_reports": archive_service.archived_count(),
            "batch_size": services.settings.ARCHIVE_BATCH_SIZE,
            "interval_seconds": services.settings.ARCHIVE_INTERVAL_SECONDS,
        }
    except SQLAlchemyError as e:
        raise HTTPException(status_code=500, detail=str(e))
