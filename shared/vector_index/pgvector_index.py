from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

import structlog
from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    Column,
    Computed,
    DateTime,
    Index,
    Integer,
    MetaData,
    Select,
    String,
    Table,
    Text,
    delete,
    func,
    or_,
    select,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, TSVECTOR, insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from shared.exceptions import IndexUnavailableError
from shared.schemas.documents import IndexedPoint, SearchMode, SearchResult
from shared.vector_index.interfaces import VectorIndexPort

logger = structlog.get_logger(__name__)

TABLE_NAME = "rag_chunks"
TEXT_SEARCH_CONFIG = "simple"


def build_chunks_table(dimensions: int, metadata: MetaData | None = None) -> Table:
    """Point schema. Stable across re-indexing runs; do not reorder keys."""
    metadata = metadata or MetaData()
    return Table(
        TABLE_NAME,
        metadata,
        Column("collection", String(128), primary_key=True),
        Column("document_id", String(255), primary_key=True),
        Column("chunk_index", Integer, primary_key=True),
        Column("owner_id", String(255), nullable=False),
        Column("content", Text, nullable=False),
        Column("metadata", JSONB, nullable=False, server_default=text("'{}'::jsonb")),
        Column("embedding", Vector(dimensions), nullable=False),
        Column(
            "content_tsv",
            TSVECTOR,
            Computed(f"to_tsvector('{TEXT_SEARCH_CONFIG}', content)", persisted=True),
        ),
        Column("indexed_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
        Index("ix_rag_chunks_owner", "collection", "owner_id"),
        Index(
            "ix_rag_chunks_embedding_hnsw",
            "embedding",
            postgresql_using="hnsw",
            postgresql_with={"m": 16, "ef_construction": 64},
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
        Index("ix_rag_chunks_content_tsv", "content_tsv", postgresql_using="gin"),
    )


def _clamp_score(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


@asynccontextmanager
async def _index_errors(operation: str) -> AsyncIterator[None]:
    try:
        yield
    except (SQLAlchemyError, OSError) as exc:
        logger.error("vector_index.operation.failed", operation=operation, error=str(exc))
        raise IndexUnavailableError(f"{operation}: {exc}") from exc


class PgVectorIndex(VectorIndexPort):
    def __init__(
        self,
        database_url: str,
        dimensions: int,
        pool_size: int = 10,
        max_overflow: int = 20,
        probe_timeout_s: float = 2.0,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._engine: AsyncEngine = engine or create_async_engine(
            database_url, pool_size=pool_size, max_overflow=max_overflow, pool_pre_ping=True
        )
        self._session_factory = sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )
        self._probe_timeout_s = probe_timeout_s
        self.table = build_chunks_table(dimensions)

    def _filtered(
        self,
        stmt: Select,
        collection: str,
        owner_id: str,
        document_ids: Sequence[str] | None,
    ) -> Select:
        """Apply the collection, owner and optional allowlist filters.

        Every read goes through here so no search path can skip the owner
        filter.
        """
        t = self.table
        stmt = stmt.where(t.c.collection == collection, t.c.owner_id == owner_id)
        if document_ids is not None:
            stmt = stmt.where(t.c.document_id.in_(list(document_ids)))
        return stmt

    def _result_columns(self) -> list[Any]:
        t = self.table
        return [t.c.document_id, t.c.chunk_index, t.c.content, t.c.metadata]

    def build_vector_query(
        self,
        collection: str,
        query_vector: list[float],
        owner_id: str,
        document_ids: Sequence[str] | None,
        limit: int,
        score_threshold: float,
    ) -> Select:
        t = self.table
        distance = t.c.embedding.cosine_distance(query_vector)
        stmt = select(*self._result_columns(), (1 - distance).label("score"))
        stmt = self._filtered(stmt, collection, owner_id, document_ids)
        return (
            stmt.where(distance <= 1 - score_threshold)
            .order_by(distance, t.c.document_id, t.c.chunk_index)
            .limit(limit)
        )

    def build_keyword_query(
        self,
        collection: str,
        query: str,
        owner_id: str,
        document_ids: Sequence[str] | None,
        limit: int,
    ) -> Select:
        t = self.table
        tsquery = func.plainto_tsquery(TEXT_SEARCH_CONFIG, query)
        # Normalisation flag 32 maps the rank into [0, 1).
        rank = func.ts_rank_cd(t.c.content_tsv, tsquery, 32)
        stmt = select(*self._result_columns(), rank.label("score"))
        stmt = self._filtered(stmt, collection, owner_id, document_ids)
        return (
            stmt.where(
                or_(
                    t.c.content_tsv.op("@@")(tsquery),
                    t.c.content.icontains(query, autoescape=True),
                )
            )
            .order_by(rank.desc(), t.c.document_id, t.c.chunk_index)
            .limit(limit)
        )

    async def ensure_schema(self) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
            await conn.run_sync(self.table.metadata.create_all)
        logger.info("vector_index.schema.ready", table=TABLE_NAME)

    async def is_available(self) -> bool:
        try:
            async with asyncio.timeout(self._probe_timeout_s):
                async with self._engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError, TimeoutError) as exc:
            logger.warning("vector_index.unavailable", error=str(exc))
            return False
        return True

    async def dispose(self) -> None:
        await self._engine.dispose()

    def _upsert_statement(self, points: Sequence[IndexedPoint]):
        t = self.table
        rows = [
            {
                "collection": p.collection,
                "document_id": p.document_id,
                "chunk_index": p.chunk_index,
                "owner_id": p.owner_id,
                "content": p.text,
                "metadata": p.metadata,
                "embedding": p.vector,
            }
            for p in points
        ]
        stmt = insert(t).values(rows)
        return stmt.on_conflict_do_update(
            index_elements=[t.c.collection, t.c.document_id, t.c.chunk_index],
            set_={
                "owner_id": stmt.excluded.owner_id,
                "content": stmt.excluded.content,
                "metadata": stmt.excluded.metadata,
                "embedding": stmt.excluded.embedding,
                "indexed_at": func.now(),
            },
        )

    async def upsert(self, collection: str, points: Sequence[IndexedPoint]) -> None:
        if not points:
            return
        _check_collection(collection, points)

        async with _index_errors("upsert"), self._session_factory() as session:
            await session.execute(self._upsert_statement(points))
            await session.commit()

        logger.info(
            "vector_index.points.upserted",
            collection=collection,
            point_count=len(points),
        )

    async def replace_document(
        self,
        collection: str,
        document_id: str,
        points: Sequence[IndexedPoint],
    ) -> None:
        _check_collection(collection, points)
        if any(p.document_id != document_id for p in points):
            raise ValueError("replace_document points must all belong to the same document")

        t = self.table
        # One transaction: concurrent readers see either the old or the new
        # point set, never a half-deleted document.
        async with _index_errors("replace_document"), self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(t).where(t.c.collection == collection, t.c.document_id == document_id)
                )
                if points:
                    await session.execute(self._upsert_statement(points))

        logger.info(
            "vector_index.document.replaced",
            collection=collection,
            document_id=document_id,
            removed=result.rowcount,
            point_count=len(points),
        )

    async def delete_by_document(self, collection: str, document_id: str) -> int:
        t = self.table
        async with _index_errors("delete_by_document"), self._session_factory() as session:
            result = await session.execute(
                delete(t).where(t.c.collection == collection, t.c.document_id == document_id)
            )
            await session.commit()

        logger.info(
            "vector_index.document.deleted",
            collection=collection,
            document_id=document_id,
            removed=result.rowcount,
        )
        return result.rowcount

    async def search(
        self,
        collection: str,
        query_vector: list[float],
        *,
        owner_id: str,
        document_ids: Sequence[str] | None = None,
        limit: int = 5,
        score_threshold: float = 0.0,
    ) -> list[SearchResult]:
        if document_ids is not None and not document_ids:
            return []
        stmt = self.build_vector_query(
            collection, query_vector, owner_id, document_ids, limit, score_threshold
        )
        return await self._fetch(stmt, SearchMode.VECTOR)

    async def keyword_search(
        self,
        collection: str,
        query: str,
        *,
        owner_id: str,
        document_ids: Sequence[str] | None = None,
        limit: int = 5,
    ) -> list[SearchResult]:
        if not query.strip() or (document_ids is not None and not document_ids):
            return []
        stmt = self.build_keyword_query(collection, query, owner_id, document_ids, limit)
        return await self._fetch(stmt, SearchMode.KEYWORD)

    async def _fetch(self, stmt: Select, match_type: SearchMode) -> list[SearchResult]:
        async with _index_errors(f"{match_type}_search"), self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.mappings().all()

        return [
            SearchResult(
                document_id=row["document_id"],
                chunk_index=row["chunk_index"],
                chunk_text=row["content"],
                score=_clamp_score(row["score"]),
                metadata=dict(row["metadata"] or {}),
                match_type=match_type,
            )
            for row in rows
        ]


def _check_collection(collection: str, points: Sequence[IndexedPoint]) -> None:
    mismatched = {p.collection for p in points if p.collection != collection}
    if mismatched:
        raise ValueError(f"points belong to other collections: {sorted(mismatched)}")
