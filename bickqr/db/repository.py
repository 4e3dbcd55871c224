"""
Narrow repository over the bicks and bick_assets tables.

The pipeline and the API depend on this interface only. Every method runs in
its own short session so worker threads never share one.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError

from bickqr.core.errors import InvalidTransition, ProcessingError, ProcessingErrorType
from bickqr.core.status import BickStatus, can_transition
from bickqr.db.models import AssetType, Bick, BickAsset

logger = logging.getLogger(__name__)


@dataclass
class BickRecord:
    """Detached snapshot of a bicks row."""
    id: str
    status: BickStatus
    slug: str
    title: str
    description: Optional[str] = None
    owner_id: Optional[str] = None
    source_url: Optional[str] = None
    original_filename: Optional[str] = None
    duration_ms: Optional[int] = None
    original_duration_ms: Optional[int] = None
    play_count: int = 0
    share_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    published_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Bick) -> "BickRecord":
        return cls(
            id=row.id,
            status=BickStatus(row.status),
            slug=row.slug,
            title=row.title,
            description=row.description,
            owner_id=row.owner_id,
            source_url=row.source_url,
            original_filename=row.original_filename,
            duration_ms=row.duration_ms,
            original_duration_ms=row.original_duration_ms,
            play_count=row.play_count or 0,
            share_count=row.share_count or 0,
            created_at=row.created_at,
            updated_at=row.updated_at,
            published_at=row.published_at,
        )


@dataclass
class NewAsset:
    """Asset row to insert after a successful upload."""
    asset_type: AssetType
    storage_key: str
    cdn_url: str
    mime_type: str
    size_bytes: int
    metadata: dict = field(default_factory=dict)


# Columns the pipeline may write alongside a status change
_UPDATABLE_FIELDS = {"duration_ms", "original_duration_ms", "published_at"}


class BickRepository:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _database_error(self, bick_id: str, step: str, exc: Exception) -> ProcessingError:
        logger.error(f"[{bick_id}] Database error during {step}: {exc}")
        return ProcessingError(
            ProcessingErrorType.DATABASE_ERROR, str(exc), bick_id=bick_id, step=step
        )

    def create_bick(
        self,
        slug: str,
        title: str,
        description: Optional[str] = None,
        owner_id: Optional[str] = None,
        source_url: Optional[str] = None,
        original_filename: Optional[str] = None,
        duration_ms: Optional[int] = None,
        original_duration_ms: Optional[int] = None,
    ) -> BickRecord:
        """Insert a new bick in the processing state."""
        db = self.session_factory()
        try:
            bick = Bick(
                slug=slug,
                title=title,
                description=description,
                owner_id=owner_id,
                source_url=source_url,
                original_filename=original_filename,
                duration_ms=duration_ms,
                original_duration_ms=original_duration_ms,
                status=BickStatus.PROCESSING,
            )
            db.add(bick)
            db.commit()
            db.refresh(bick)
            return BickRecord.from_row(bick)
        except SQLAlchemyError as e:
            db.rollback()
            raise self._database_error("-", "create_bick", e)
        finally:
            db.close()

    def delete_bick(self, bick_id: str) -> None:
        db = self.session_factory()
        try:
            db.execute(delete(BickAsset).where(BickAsset.bick_id == bick_id))
            db.execute(delete(Bick).where(Bick.id == bick_id))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise self._database_error(bick_id, "delete_bick", e)
        finally:
            db.close()

    def get_bick(self, bick_id: str) -> Optional[BickRecord]:
        db = self.session_factory()
        try:
            bick = db.get(Bick, bick_id)
            return BickRecord.from_row(bick) if bick else None
        except SQLAlchemyError as e:
            raise self._database_error(bick_id, "get_bick", e)
        finally:
            db.close()

    def update_bick_status(self, bick_id: str, status, **fields) -> Optional[BickRecord]:
        """
        Move a bick to `status` in a single conditional UPDATE.

        Returns the updated record, or None if the bick does not exist.
        Raises InvalidTransition for edges the lifecycle forbids (including a
        concurrent change between read and write) and ProcessingError
        (DATABASE_ERROR) when the database fails; the stored status is then
        unchanged.
        """
        target = BickStatus(status)
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        db = self.session_factory()
        try:
            current_row = db.execute(
                select(Bick.status, Bick.published_at).where(Bick.id == bick_id)
            ).first()
            if current_row is None:
                return None

            current = BickStatus(current_row.status)
            if not can_transition(current, target):
                raise InvalidTransition(bick_id, current.value, target.value)

            values = dict(fields)
            values["status"] = target
            values["updated_at"] = datetime.utcnow()
            if target == BickStatus.LIVE and current_row.published_at is None:
                values.setdefault("published_at", datetime.utcnow())

            result = db.execute(
                update(Bick)
                .where(Bick.id == bick_id, Bick.status == current)
                .values(**values)
            )
            if result.rowcount != 1:
                db.rollback()
                latest = db.execute(select(Bick.status).where(Bick.id == bick_id)).scalar()
                raise InvalidTransition(
                    bick_id, BickStatus(latest).value if latest else "missing", target.value
                )
            db.commit()

            bick = db.get(Bick, bick_id)
            db.refresh(bick)
            logger.info(f"[{bick_id}] Status {current.value} -> {target.value}")
            return BickRecord.from_row(bick)
        except SQLAlchemyError as e:
            db.rollback()
            raise self._database_error(bick_id, "update_bick_status", e)
        finally:
            db.close()

    def insert_asset(self, bick_id: str, asset: NewAsset) -> str:
        """Record an uploaded asset, replacing any earlier asset of the same type."""
        db = self.session_factory()
        try:
            db.execute(
                delete(BickAsset).where(
                    BickAsset.bick_id == bick_id,
                    BickAsset.asset_type == AssetType(asset.asset_type),
                )
            )
            row = BickAsset(
                bick_id=bick_id,
                asset_type=AssetType(asset.asset_type),
                storage_key=asset.storage_key,
                cdn_url=asset.cdn_url,
                mime_type=asset.mime_type,
                size_bytes=asset.size_bytes,
                meta=asset.metadata or None,
            )
            db.add(row)
            db.commit()
            return row.id
        except SQLAlchemyError as e:
            db.rollback()
            raise self._database_error(bick_id, "insert_asset", e)
        finally:
            db.close()

    def list_asset_types(self, bick_id: str) -> set:
        db = self.session_factory()
        try:
            rows = db.execute(
                select(BickAsset.asset_type).where(BickAsset.bick_id == bick_id)
            ).scalars()
            return {AssetType(r) for r in rows}
        except SQLAlchemyError as e:
            raise self._database_error(bick_id, "list_asset_types", e)
        finally:
            db.close()
