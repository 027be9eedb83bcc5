from study_buddy.database import Base
from study_buddy.models.report import ArchivedReport

__all__ = ["Base", "ArchivedReport"]
