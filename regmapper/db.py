# db.py
"""Engine/session helpers and reference data seeding.

The pipeline never reaches for a module-level connection: callers build
an engine with :func:`create_db_engine`, open sessions from
:func:`make_session_factory` and pass the session into every stage.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from sqlalchemy import create_engine, event, func
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base, Control, Tag

logger = logging.getLogger(__name__)

DEFAULT_SEED_PATH = Path(__file__).parent / "seed.yaml"


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(db_url: str) -> Engine:
    """Create an engine, switching SQLite foreign keys on.

    In-memory SQLite URLs get a ``StaticPool`` so that every session
    shares the same database.
    """
    kwargs = {}
    if db_url.startswith("sqlite") and ":memory:" in db_url:
        kwargs = {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }
    engine = create_engine(db_url, **kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create all tables if they do not exist yet."""
    Base.metadata.create_all(engine)


def load_seed_data(seed_path: Optional[Path | str] = None) -> Dict[str, List[dict]]:
    path = seed_path or os.getenv("REGMAPPER_SEED") or DEFAULT_SEED_PATH
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return {"tags": data.get("tags") or [], "controls": data.get("controls") or []}


def seed_reference_data(db: Session, seed_path: Optional[Path | str] = None) -> Dict[str, int]:
    """Insert seed tags and controls, each table only when it is empty.

    Returns
    -------
    Dict[str, int]
        Number of tags and controls inserted by this call.
    """
    data = load_seed_data(seed_path)
    stats = {"tags": 0, "controls": 0}

    if db.query(func.count(Tag.id)).scalar() == 0:
        for row in data["tags"]:
            db.add(Tag(name=row["name"], keyword=row.get("keyword") or ""))
            stats["tags"] += 1

    if db.query(func.count(Control.id)).scalar() == 0:
        for row in data["controls"]:
            db.add(
                Control(
                    framework=row["framework"],
                    control_id=str(row["control_id"]),
                    title=row.get("title") or "",
                    description=row.get("description") or "",
                )
            )
            stats["controls"] += 1

    db.commit()
    if stats["tags"] or stats["controls"]:
        logger.info(f"Seeded reference data: {stats}")
    return stats
