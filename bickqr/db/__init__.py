from bickqr.db.database import Base, init_db, make_engine, make_session_factory
from bickqr.db.models import AssetType, Bick, BickAsset, BickStatus, QueueJob, QueueJobState
from bickqr.db.repository import BickRecord, BickRepository, NewAsset

__all__ = [
    "Base", "init_db", "make_engine", "make_session_factory", "AssetType", "Bick",
    "BickAsset", "BickStatus", "QueueJob", "QueueJobState", "BickRecord",
    "BickRepository", "NewAsset",
]
