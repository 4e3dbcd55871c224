"""
Database models for bicks, their assets, and the processing queue.
"""
import enum
import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, DateTime, Integer, Text, Enum, ForeignKey, JSON, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from bickqr.core.status import BickStatus
from bickqr.db.database import Base


class AssetType(str, enum.Enum):
    ORIGINAL = "original"
    AUDIO = "audio"
    WAVEFORM_JSON = "waveform_json"
    OG_IMAGE = "og_image"
    TEASER_MP4 = "teaser_mp4"
    THUMBNAIL = "thumbnail"


class QueueJobState(str, enum.Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


def _new_id() -> str:
    return str(uuid.uuid4())


class Bick(Base):
    """A short audio clip - one row per upload or URL extraction."""
    __tablename__ = "bicks"

    id = Column(String(36), primary_key=True, default=_new_id)
    owner_id = Column(String(36), nullable=True)

    slug = Column(String(200), nullable=False)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)

    # Status
    status = Column(
        Enum(BickStatus, values_callable=lambda e: [m.value for m in e]),
        default=BickStatus.PROCESSING,
        nullable=False,
    )

    # Source
    source_url = Column(Text, nullable=True)  # Only for remote platform extraction
    original_filename = Column(String(500), nullable=True)
    duration_ms = Column(Integer, nullable=True)
    original_duration_ms = Column(Integer, nullable=True)  # Before trimming

    play_count = Column(Integer, default=0, nullable=False)
    share_count = Column(Integer, default=0, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )
    published_at = Column(DateTime, nullable=True)

    assets = relationship(
        "BickAsset", back_populates="bick", cascade="all, delete-orphan"
    )


class BickAsset(Base):
    """A stored file belonging to exactly one bick."""
    __tablename__ = "bick_assets"
    __table_args__ = (UniqueConstraint("bick_id", "asset_type", name="uq_bick_asset_type"),)

    id = Column(String(36), primary_key=True, default=_new_id)
    bick_id = Column(
        String(36), ForeignKey("bicks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    asset_type = Column(
        Enum(AssetType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    storage_key = Column(String(500), nullable=True)
    cdn_url = Column(Text, nullable=True)
    mime_type = Column(String(100), nullable=True)
    size_bytes = Column(Integer, nullable=True)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    bick = relationship("Bick", back_populates="assets")


class QueueJob(Base):
    """Job queue - one row per bick, keyed by the dedup job id."""
    __tablename__ = "processing_jobs"

    id = Column(String(100), primary_key=True)  # "bick-{bick_id}"
    bick_id = Column(String(36), nullable=False, index=True)
    payload = Column(JSON, nullable=False)

    state = Column(
        Enum(QueueJobState, values_callable=lambda e: [m.value for m in e]),
        default=QueueJobState.WAITING,
        nullable=False,
        index=True,
    )
    attempts_made = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=3, nullable=False)
    run_at = Column(DateTime, default=datetime.utcnow, nullable=False)  # Next eligible time
    last_error = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    finished_at = Column(DateTime, nullable=True)
