"""SQLAlchemy-backed listing store.

One ``saved_listings`` table; the detail record is kept as JSON in
``detail_json`` and re-normalized on load, so rows written by older
scrapers come back clean.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import structlog
from sqlalchemy import JSON, DateTime, Integer, String, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import StaticPool

from wholesale.detail.models import DetailRecord, ListingStub, QualityThresholds
from wholesale.scrapers.utils.normalizer import canonical_url
from wholesale.store.base import ListingStore, StoredListing

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class SavedListing(Base):
    """A marketplace listing saved by search ingestion."""

    __tablename__ = "saved_listings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    platform: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    url: Mapped[str] = mapped_column(String(2000), nullable=False)
    canonical_url: Mapped[str] = mapped_column(String(2000), nullable=False, unique=True, index=True)
    stub_json: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    detail_json: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON,
        nullable=True,
        comment="Canonical detail record",
    )
    detail_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


def _to_stored(row: SavedListing) -> StoredListing:
    return StoredListing(
        id=row.id,
        platform=row.platform,
        url=row.url,
        stub=ListingStub.from_dict(row.stub_json) if row.stub_json else None,
        detail=DetailRecord.from_dict(row.detail_json),
        detail_updated_at=row.detail_updated_at,
    )


class SqlListingStore(ListingStore):
    """Listing store over an async SQLAlchemy engine."""

    # Rows scanned per query while looking for weak records
    SCAN_CHUNK = 200

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        thresholds: Optional[QualityThresholds] = None,
        engine=None,
    ):
        super().__init__(thresholds)
        self.session_factory = session_factory
        self.engine = engine

    @classmethod
    def from_url(
        cls,
        database_url: str,
        thresholds: Optional[QualityThresholds] = None,
        echo: bool = False,
    ) -> "SqlListingStore":
        engine_kwargs: dict = {"echo": echo}
        # SQLite doesn't support pool_size / max_overflow / pool_pre_ping
        if database_url.startswith("sqlite"):
            if ":memory:" in database_url:
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs.update(pool_size=10, max_overflow=5, pool_pre_ping=True)

        engine = create_async_engine(database_url, **engine_kwargs)
        session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        return cls(session_factory, thresholds=thresholds, engine=engine)

    async def create_all(self) -> None:
        """Create the table if it does not exist."""
        if self.engine is None:
            raise RuntimeError("create_all requires a store built with an engine")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()

    async def find_weak(
        self,
        platform: Optional[str] = None,
        cursor: int = 0,
        limit: int = 50,
        include_acceptable: bool = False,
    ) -> List[StoredListing]:
        found: List[StoredListing] = []
        last_id = cursor
        async with self.session_factory() as session:
            while len(found) < limit:
                stmt = select(SavedListing).where(SavedListing.id > last_id)
                if platform:
                    stmt = stmt.where(SavedListing.platform == platform)
                stmt = stmt.order_by(SavedListing.id.asc()).limit(self.SCAN_CHUNK)
                rows = (await session.execute(stmt)).scalars().all()
                if not rows:
                    break
                for row in rows:
                    last_id = row.id
                    listing = _to_stored(row)
                    if self.needs_healing(listing, include_acceptable):
                        found.append(listing)
                        if len(found) >= limit:
                            break
        return found

    async def count(self, platform: Optional[str] = None) -> int:
        stmt = select(func.count(SavedListing.id))
        if platform:
            stmt = stmt.where(SavedListing.platform == platform)
        async with self.session_factory() as session:
            return int((await session.execute(stmt)).scalar_one())

    async def get(self, listing_id: int) -> Optional[StoredListing]:
        async with self.session_factory() as session:
            row = await session.get(SavedListing, listing_id)
            return _to_stored(row) if row else None

    async def get_by_url(self, url: str) -> Optional[StoredListing]:
        stmt = select(SavedListing).where(SavedListing.canonical_url == canonical_url(url))
        async with self.session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _to_stored(row) if row else None

    async def upsert_detail(
        self,
        listing_id: int,
        record: DetailRecord,
        updated_at: Optional[datetime] = None,
    ) -> bool:
        async with self.session_factory() as session:
            row = await session.get(SavedListing, listing_id)
            if row is None:
                logger.warning("upsert_detail_unknown_listing", listing_id=listing_id)
                return False
            row.detail_json = record.to_dict()
            row.detail_updated_at = updated_at or _utcnow()
            await session.commit()
        return True

    async def save_stubs(self, stubs: Sequence[ListingStub]) -> List[StoredListing]:
        saved: List[StoredListing] = []
        async with self.session_factory() as session:
            for stub in stubs:
                key = canonical_url(stub.source_url)
                row = (
                    await session.execute(select(SavedListing).where(SavedListing.canonical_url == key))
                ).scalar_one_or_none()
                if row is None:
                    row = SavedListing(
                        platform=stub.platform,
                        url=stub.source_url,
                        canonical_url=key,
                        stub_json=stub.to_dict(),
                    )
                    session.add(row)
                    await session.flush()
                saved.append(_to_stored(row))
            await session.commit()
        logger.info("stubs_saved", count=len(saved))
        return saved
