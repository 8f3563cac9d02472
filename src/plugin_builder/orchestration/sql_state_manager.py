"""
plugin_builder.orchestration.sql_state_manager - SQL-Backed State Manager
===========================================================================

Persists plugins, plugin versions and build records with SQLAlchemy. This is
the backend for deployments where the marketplace collaborators read the
same database.

Tables:
    plugins          - plugin summary rows
    plugin_versions  - published artifacts, one row per successful build
    plugin_builds    - build records (state machine)

Atomicity:
    complete_build runs the whole promotion (supersede latest → insert
    version → update plugin → mark build success) inside one transaction.
    The plugin row is read with SELECT ... FOR UPDATE, so concurrent
    promotions for the same plugin serialize on databases with row locks.
    A partial unique index on plugin_versions(plugin_id) WHERE is_latest
    makes a second latest version impossible even if that lock is absent
    (SQLite serializes writers instead).

Threading:
    SQLAlchemy sessions here are synchronous. Each public coroutine runs one
    unit of work in a worker thread via asyncio.to_thread, keeping the event
    loop free while the database is busy.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar

import structlog
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    func,
    select,
    text,
    update,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from plugin_builder.core.config import DatabaseConfig
from plugin_builder.core.enums import BuildStatus, PluginStatus
from plugin_builder.core.exceptions import StateTransactionError
from plugin_builder.core.models import (
    ArtifactInfo,
    BuildRecord,
    BuildRequest,
    Plugin,
    PluginManifest,
    PluginVersion,
)
from plugin_builder.orchestration.state_manager import (
    DEFAULT_BUILD_LIST_LIMIT,
    StateManager,
    build_not_found,
    check_build_id,
    invalid_transition,
    new_plugin_version,
    plugin_not_registered,
)


logger = structlog.get_logger()

Base = declarative_base()

T = TypeVar("T")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; every stored timestamp is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# =============================================================================
# ORM Rows
# =============================================================================
class PluginRow(Base):
    __tablename__ = "plugins"

    id = Column(String(255), primary_key=True)
    name = Column(String(255), nullable=False, default="")
    status = Column(String(32), nullable=False, default=PluginStatus.DRAFT.value)
    current_version = Column(String(50), nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now)


class PluginVersionRow(Base):
    __tablename__ = "plugin_versions"

    id = Column(String(64), primary_key=True)
    seq = Column(Integer, nullable=False, default=0)
    plugin_id = Column(String(255), ForeignKey("plugins.id", ondelete="CASCADE"), nullable=False)
    version = Column(String(50), nullable=False)
    download_url = Column(Text, nullable=False)
    checksum = Column(String(128), nullable=False)
    file_size = Column(Integer, nullable=False)
    permissions = Column(JSON, nullable=False, default=list)
    ai_tool_schemas = Column(JSON, nullable=True)
    min_launcher_version = Column(String(50), nullable=True)
    changelog = Column(Text, nullable=True)
    is_latest = Column(Boolean, nullable=False, default=False)
    is_prerelease = Column(Boolean, nullable=False, default=False)
    published_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (
        Index("ix_plugin_versions_plugin_id", "plugin_id"),
        Index(
            "uq_plugin_versions_single_latest",
            "plugin_id",
            unique=True,
            sqlite_where=text("is_latest = 1"),
            postgresql_where=text("is_latest"),
        ),
    )


class PluginBuildRow(Base):
    __tablename__ = "plugin_builds"

    id = Column(String(64), primary_key=True)
    seq = Column(Integer, nullable=False, default=0)
    plugin_id = Column(String(255), ForeignKey("plugins.id", ondelete="CASCADE"), nullable=False)
    target_version = Column(String(50), nullable=False)
    release_tag = Column(String(255), nullable=False, default="")
    status = Column(String(32), nullable=False, default=BuildStatus.PENDING.value)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    logs = Column(JSON, nullable=False, default=list)
    error_message = Column(Text, nullable=True)
    version_id = Column(String(64), ForeignKey("plugin_versions.id"), nullable=True)

    __table_args__ = (Index("ix_plugin_builds_plugin_created", "plugin_id", "created_at"),)


# =============================================================================
# Row ↔ Model Conversion
# =============================================================================
def _plugin_from_row(row: PluginRow) -> Plugin:
    return Plugin(
        plugin_id=row.id,
        name=row.name,
        status=PluginStatus(row.status),
        current_version=row.current_version,
        published_at=_as_utc(row.published_at),
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
    )


def _build_from_row(row: PluginBuildRow) -> BuildRecord:
    return BuildRecord(
        build_id=row.id,
        plugin_id=row.plugin_id,
        target_version=row.target_version,
        release_tag=row.release_tag,
        status=BuildStatus(row.status),
        created_at=_as_utc(row.created_at),
        started_at=_as_utc(row.started_at),
        completed_at=_as_utc(row.completed_at),
        logs=list(row.logs or []),
        error_message=row.error_message,
        version_id=row.version_id,
    )


def _version_from_row(row: PluginVersionRow) -> PluginVersion:
    return PluginVersion(
        version_id=row.id,
        plugin_id=row.plugin_id,
        version=row.version,
        download_url=row.download_url,
        checksum=row.checksum,
        file_size=row.file_size,
        permissions=list(row.permissions or []),
        ai_tool_schemas=row.ai_tool_schemas if row.ai_tool_schemas is not None else {},
        min_launcher_version=row.min_launcher_version,
        changelog=row.changelog,
        is_latest=row.is_latest,
        is_prerelease=row.is_prerelease,
        published_at=_as_utc(row.published_at),
    )


def _engine_for(config: DatabaseConfig) -> Engine:
    url = make_url(config.url)
    kwargs: dict[str, Any] = {"echo": config.echo}
    if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
        # One shared connection, otherwise every worker thread would see
        # its own empty in-memory database.
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(url, **kwargs)


# =============================================================================
# SqlStateManager Implementation
# =============================================================================
class SqlStateManager(StateManager):
    """SQLAlchemy-backed state manager.

    Example:
        >>> sm = SqlStateManager(DatabaseConfig(url="sqlite:///builds.db"))
        >>> await sm.connect()        # creates tables if missing
        >>> await sm.save_plugin(Plugin(plugin_id="clipboard-history"))
    """

    def __init__(self, config: Optional[DatabaseConfig] = None) -> None:
        self._config = config or DatabaseConfig()
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker[Session]] = None
        self._seq = 0
        self._logger = logger.bind(component="sql_state_manager")

    # -------------------------------------------------------------------------
    # Connection Lifecycle
    # -------------------------------------------------------------------------
    async def connect(self) -> None:
        if self._engine is not None:
            return

        def _setup() -> tuple[Engine, int]:
            engine = _engine_for(self._config)
            Base.metadata.create_all(engine)
            # Tie-break ordering keeps increasing across restarts.
            with engine.connect() as conn:
                last_seq = max(
                    conn.scalar(select(func.max(PluginBuildRow.seq))) or 0,
                    conn.scalar(select(func.max(PluginVersionRow.seq))) or 0,
                )
            return engine, last_seq

        try:
            self._engine, self._seq = await asyncio.to_thread(_setup)
        except SQLAlchemyError as e:
            raise StateTransactionError(
                message=f"Could not connect to state database: {e}",
                error_code="STATE_CONNECT_FAILED",
            ) from e

        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        self._logger.info("sql_state_manager_connected", backend=self._engine.url.get_backend_name())

    async def disconnect(self) -> None:
        if self._engine is None:
            return
        engine, self._engine, self._session_factory = self._engine, None, None
        await asyncio.to_thread(engine.dispose)
        self._logger.info("sql_state_manager_disconnected")

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    # -------------------------------------------------------------------------
    # Unit-of-Work Runner
    # -------------------------------------------------------------------------
    async def _run(self, work: Callable[[Session], T]) -> T:
        """Run ``work`` in one transaction on a worker thread.

        Commits when ``work`` returns, rolls back when it raises. Database
        errors surface as StateTransactionError.
        """
        if self._session_factory is None:
            raise StateTransactionError(
                message="SqlStateManager is not connected",
                error_code="STATE_NOT_CONNECTED",
            )
        factory = self._session_factory

        def _unit() -> T:
            with factory.begin() as session:
                return work(session)

        try:
            return await asyncio.to_thread(_unit)
        except StateTransactionError:
            raise
        except IntegrityError as e:
            raise StateTransactionError(
                message=f"State transaction violated a constraint: {e.orig}",
                error_code="STATE_CONSTRAINT_VIOLATION",
            ) from e
        except SQLAlchemyError as e:
            raise StateTransactionError(
                message=f"State transaction failed: {e}",
                error_code="STATE_TRANSACTION_FAILED",
            ) from e

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    # -------------------------------------------------------------------------
    # Plugin Summary
    # -------------------------------------------------------------------------
    async def save_plugin(self, plugin: Plugin) -> None:
        def work(session: Session) -> None:
            session.merge(
                PluginRow(
                    id=plugin.plugin_id,
                    name=plugin.name,
                    status=plugin.status.value,
                    current_version=plugin.current_version,
                    published_at=plugin.published_at,
                    created_at=plugin.created_at,
                    updated_at=plugin.updated_at,
                )
            )

        await self._run(work)

    async def get_plugin(self, plugin_id: str) -> Optional[Plugin]:
        def work(session: Session) -> Optional[Plugin]:
            row = session.get(PluginRow, plugin_id)
            return _plugin_from_row(row) if row else None

        return await self._run(work)

    # -------------------------------------------------------------------------
    # Build Records
    # -------------------------------------------------------------------------
    async def create_build(
        self,
        request: BuildRequest,
        build_id: Optional[str] = None,
    ) -> BuildRecord:
        if build_id is not None:
            check_build_id(build_id)

        fields: dict[str, Any] = {
            "plugin_id": request.plugin_id,
            "target_version": request.target_version,
            "release_tag": request.release_tag,
        }
        if build_id is not None:
            fields["build_id"] = build_id
        record = BuildRecord(**fields)
        seq = self._next_seq()

        def work(session: Session) -> None:
            if session.get(PluginRow, request.plugin_id) is None:
                raise plugin_not_registered(request.plugin_id)
            if session.get(PluginBuildRow, record.build_id) is not None:
                raise StateTransactionError(
                    message=f"Build already exists: {record.build_id}",
                    error_code="DUPLICATE_BUILD",
                    details={"build_id": record.build_id},
                )
            session.add(
                PluginBuildRow(
                    id=record.build_id,
                    seq=seq,
                    plugin_id=record.plugin_id,
                    target_version=record.target_version,
                    release_tag=record.release_tag,
                    status=record.status.value,
                    created_at=record.created_at,
                    logs=[],
                )
            )

        await self._run(work)
        self._logger.debug("build_created", build_id=record.build_id, plugin_id=record.plugin_id)
        return record

    async def get_build(self, build_id: str) -> Optional[BuildRecord]:
        def work(session: Session) -> Optional[BuildRecord]:
            row = session.get(PluginBuildRow, build_id)
            return _build_from_row(row) if row else None

        return await self._run(work)

    async def list_builds(
        self,
        plugin_id: str,
        limit: int = DEFAULT_BUILD_LIST_LIMIT,
    ) -> list[BuildRecord]:
        def work(session: Session) -> list[BuildRecord]:
            rows = session.scalars(
                select(PluginBuildRow)
                .where(PluginBuildRow.plugin_id == plugin_id)
                .order_by(PluginBuildRow.created_at.desc(), PluginBuildRow.seq.desc())
                .limit(limit)
            )
            return [_build_from_row(row) for row in rows]

        return await self._run(work)

    async def mark_building(self, build_id: str) -> BuildRecord:
        def work(session: Session) -> BuildRecord:
            row = session.get(PluginBuildRow, build_id, with_for_update=True)
            if row is None:
                raise build_not_found(build_id)
            status = BuildStatus(row.status)
            if status != BuildStatus.PENDING:
                raise invalid_transition(build_id, status, BuildStatus.PENDING.value)
            row.status = BuildStatus.BUILDING.value
            row.started_at = _now()
            session.flush()
            return _build_from_row(row)

        record = await self._run(work)
        self._logger.debug("build_started", build_id=build_id)
        return record

    async def complete_build(
        self,
        build_id: str,
        request: BuildRequest,
        artifact: ArtifactInfo,
        download_url: str,
        manifest: Optional[PluginManifest],
        logs: list[str],
        version_id: Optional[str] = None,
    ) -> PluginVersion:
        version = new_plugin_version(request, artifact, download_url, manifest, version_id)
        seq = self._next_seq()

        def work(session: Session) -> PluginVersion:
            build = session.get(PluginBuildRow, build_id, with_for_update=True)
            if build is None:
                raise build_not_found(build_id)
            status = BuildStatus(build.status)
            if status != BuildStatus.BUILDING:
                raise invalid_transition(build_id, status, BuildStatus.BUILDING.value)

            # Row lock on the plugin serializes promotions for this plugin.
            plugin = session.get(PluginRow, request.plugin_id, with_for_update=True)
            if plugin is None:
                raise plugin_not_registered(request.plugin_id)

            now = _now()

            # (a) supersede the previous latest; must precede (b)
            if not request.is_prerelease:
                session.execute(
                    update(PluginVersionRow)
                    .where(
                        PluginVersionRow.plugin_id == request.plugin_id,
                        PluginVersionRow.is_latest.is_(True),
                    )
                    .values(is_latest=False)
                )
                session.flush()

            # (b) insert the new version
            session.add(
                PluginVersionRow(
                    id=version.version_id,
                    seq=seq,
                    plugin_id=version.plugin_id,
                    version=version.version,
                    download_url=version.download_url,
                    checksum=version.checksum,
                    file_size=version.file_size,
                    permissions=version.permissions,
                    ai_tool_schemas=version.ai_tool_schemas,
                    min_launcher_version=version.min_launcher_version,
                    changelog=version.changelog,
                    is_latest=version.is_latest,
                    is_prerelease=version.is_prerelease,
                    published_at=version.published_at,
                )
            )
            session.flush()

            # (c) plugin summary
            plugin.status = PluginStatus.PUBLISHED.value
            if not request.is_prerelease:
                plugin.current_version = request.target_version
            plugin.published_at = now
            plugin.updated_at = now

            # (d) build record
            build.status = BuildStatus.SUCCESS.value
            build.version_id = version.version_id
            build.completed_at = now
            build.logs = list(logs)

            return version

        result = await self._run(work)
        self._logger.info(
            "build_succeeded",
            build_id=build_id,
            plugin_id=request.plugin_id,
            version=request.target_version,
            is_latest=result.is_latest,
        )
        return result

    async def fail_build(
        self,
        build_id: str,
        error_message: str,
        logs: list[str],
    ) -> BuildRecord:
        def work(session: Session) -> BuildRecord:
            row = session.get(PluginBuildRow, build_id, with_for_update=True)
            if row is None:
                raise build_not_found(build_id)
            status = BuildStatus(row.status)
            if status.is_terminal:
                raise invalid_transition(build_id, status, "pending or building")
            row.status = BuildStatus.FAILED.value
            row.error_message = error_message
            row.completed_at = _now()
            row.logs = list(logs)
            session.flush()
            return _build_from_row(row)

        record = await self._run(work)
        self._logger.info("build_failed", build_id=build_id, error=error_message)
        return record

    # -------------------------------------------------------------------------
    # Plugin Versions
    # -------------------------------------------------------------------------
    async def get_version(self, version_id: str) -> Optional[PluginVersion]:
        def work(session: Session) -> Optional[PluginVersion]:
            row = session.get(PluginVersionRow, version_id)
            return _version_from_row(row) if row else None

        return await self._run(work)

    async def list_versions(self, plugin_id: str) -> list[PluginVersion]:
        def work(session: Session) -> list[PluginVersion]:
            rows = session.scalars(
                select(PluginVersionRow)
                .where(PluginVersionRow.plugin_id == plugin_id)
                .order_by(PluginVersionRow.published_at, PluginVersionRow.seq)
            )
            return [_version_from_row(row) for row in rows]

        return await self._run(work)

    async def get_latest_version(self, plugin_id: str) -> Optional[PluginVersion]:
        def work(session: Session) -> Optional[PluginVersion]:
            row = session.scalars(
                select(PluginVersionRow).where(
                    PluginVersionRow.plugin_id == plugin_id,
                    PluginVersionRow.is_latest.is_(True),
                )
            ).first()
            return _version_from_row(row) if row else None

        return await self._run(work)
