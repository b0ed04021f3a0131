from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event, inspect as sa_inspect, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from founderkit.gates import PHASE_SEED
from founderkit.models import Base

log = logging.getLogger(__name__)

IN_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


class Store:
    """Owns the engine and session factory for one database.

    Every service receives the same ``Store`` so the API, the MCP server and
    tests can each run against their own database without module globals.
    """

    def __init__(self, url: str):
        self.url = url
        if url in IN_MEMORY_URLS:
            self.engine = create_engine(
                url, connect_args={"check_same_thread": False}, poolclass=StaticPool,
            )
        else:
            if url.startswith("sqlite:///"):
                Path(url.removeprefix("sqlite:///")).parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_engine(
                url, connect_args={"check_same_thread": False, "timeout": 30},
            )
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _sqlite_pragmas)
        Base.metadata.create_all(self.engine)
        self._factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        _migrate_existing_db(self.engine)
        _seed_phase_config(self.engine)

    @classmethod
    def from_path(cls, db_path: str | Path) -> Store:
        return cls(f"sqlite:///{Path(db_path)}")

    def get_session(self) -> Session:
        return self._factory()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Transactional session scope.

        Usage::

            with store.session() as session:
                ...
                session.commit()
        """
        session = self._factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


def _sqlite_pragmas(dbapi_conn, _record) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _migrate_existing_db(engine) -> None:
    """Add columns that may be missing in older databases."""
    inspector = sa_inspect(engine)
    if inspector.has_table("ai_conversations"):
        columns = {col["name"] for col in inspector.get_columns("ai_conversations")}
        if "system_prompt_hash" not in columns:
            with engine.begin() as conn:
                conn.execute(text(
                    "ALTER TABLE ai_conversations ADD COLUMN system_prompt_hash VARCHAR(64) DEFAULT ''"
                ))
    if inspector.has_table("ventures"):
        columns = {col["name"] for col in inspector.get_columns("ventures")}
        for name, ddl in (
            ("entity_state", "VARCHAR(50) DEFAULT ''"),
            ("ein_obtained", "BOOLEAN DEFAULT 0"),
            ("bank_account_opened", "BOOLEAN DEFAULT 0"),
        ):
            if name not in columns:
                log.info("Adding missing column ventures.%s", name)
                with engine.begin() as conn:
                    conn.execute(text(f"ALTER TABLE ventures ADD COLUMN {name} {ddl}"))


def _seed_phase_config(engine) -> None:
    """Seed phase content if the table is empty."""
    with engine.connect() as conn:
        count = conn.execute(text("SELECT COUNT(*) FROM phase_config")).scalar()
        if count > 0:
            return
    with engine.begin() as conn:
        for phase in PHASE_SEED:
            conn.execute(text(
                "INSERT INTO phase_config "
                "(phase_number, name, description, core_deliverable, guide_content, "
                "tool_recommendations_json, updated_at) "
                "VALUES (:phase_number, :name, :description, :core_deliverable, :guide_content, "
                ":tools, CURRENT_TIMESTAMP)"
            ), {
                "phase_number": phase["phase_number"],
                "name": phase["name"],
                "description": phase["description"],
                "core_deliverable": phase["core_deliverable"],
                "guide_content": phase["guide_content"],
                "tools": json.dumps(phase["tool_recommendations"]),
            })
    log.info("Seeded %d phase configs", len(PHASE_SEED))
