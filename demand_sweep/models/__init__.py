"""SQLAlchemy database models."""
from dotenv import load_dotenv
from demand_sweep.models.base import Base
from demand_sweep.models.corpus import CategorySnapshotRecord, KeywordRowRecord


load_dotenv()

__all__ = [
    "Base",
    "CategorySnapshotRecord",
    "KeywordRowRecord",
]
