"""
Module: mission_kernel.db.triggers
Responsibility: Loading, installing, and verifying database-level immutability
    triggers (Layer 2 of 2).  This is the storage complement to the ORM-level
    listeners in db/immutability.py.
Architecture position: Kernel > DB.  May import from db/ only (pathlib for
    SQL file loading, sqlalchemy for execution).  MUST NOT import from
    models/, services/, domain/, or outer layers.

Invariants enforced:
    - mission_workflow_log rows: no UPDATE, no DELETE (and no TRUNCATE on
      PostgreSQL).  The error message always contains "immutable".
    - missions rows: no physical DELETE (soft delete via is_deleted).

Failure modes:
    - PostgreSQL RAISE EXCEPTION / SQLite RAISE(ABORT) on violation, surfaced
      by SQLAlchemy as a DBAPIError subclass (IntegrityError on SQLite).
    - FileNotFoundError if SQL files are missing from the sql/ directory.
    - ValueError for a dialect with no trigger set.

Each dialect has its own directory under sql/.  PostgreSQL files may hold
several statements and are executed whole; SQLite files hold exactly one
statement each because the pysqlite driver executes one statement per call.
"""

from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import Engine

from mission_kernel.logging_config import get_logger

logger = get_logger("db.triggers")

# =============================================================================
# SQL File Loading
# =============================================================================

SQL_DIR = Path(__file__).parent / "sql"

# Ordered trigger files per dialect (numbered for predictable order)
TRIGGER_FILES: dict[str, list[str]] = {
    "postgresql": [
        "01_workflow_log.sql",
        "02_mission.sql",
    ],
    "sqlite": [
        "01_workflow_log_update.sql",
        "02_workflow_log_delete.sql",
        "03_mission_delete.sql",
    ],
}

# PostgreSQL drop script (SQLite drops are generated from trigger names)
DROP_FILE = "99_drop_all.sql"

TRIGGER_NAMES: dict[str, list[str]] = {
    "postgresql": [
        "trg_workflow_log_immutability_update",
        "trg_workflow_log_immutability_delete",
        "trg_workflow_log_immutability_truncate",
        "trg_mission_no_delete",
    ],
    "sqlite": [
        "trg_workflow_log_immutability_update",
        "trg_workflow_log_immutability_delete",
        "trg_mission_no_delete",
    ],
}


def _dialect_name(engine: Engine) -> str:
    name = engine.dialect.name
    if name not in TRIGGER_FILES:
        raise ValueError(f"No immutability triggers defined for dialect {name!r}")
    return name


def _load_sql_file(dialect: str, filename: str) -> str:
    """
    Load SQL content from a file in the dialect's sql/ subdirectory.

    Raises:
        FileNotFoundError: If the file doesn't exist.
    """
    return (SQL_DIR / dialect / filename).read_text(encoding="utf-8")


def _statements_for(dialect: str) -> list[str]:
    """Statements to execute, in order, to install every trigger."""
    if dialect == "postgresql":
        parts = []
        for filename in TRIGGER_FILES[dialect]:
            parts.append(f"-- Loading: {filename}")
            parts.append(_load_sql_file(dialect, filename))
        return ["\n".join(parts)]
    return [_load_sql_file(dialect, filename).strip() for filename in TRIGGER_FILES[dialect]]


# =============================================================================
# Public API
# =============================================================================


def install_immutability_triggers(engine: Engine) -> None:
    """
    Install database-level immutability triggers for the engine's dialect.

    Preconditions: Tables must exist (call after metadata create_all).
    Postconditions: Every trigger in TRIGGER_NAMES[dialect] is installed.
        Installation is idempotent (CREATE OR REPLACE / IF NOT EXISTS).
    """
    dialect = _dialect_name(engine)
    with engine.connect() as conn:
        for statement in _statements_for(dialect):
            conn.execute(text(statement))
        conn.commit()
    logger.info(
        "immutability_triggers_installed",
        extra={"dialect": dialect, "trigger_count": len(TRIGGER_NAMES[dialect])},
    )


def uninstall_immutability_triggers(engine: Engine) -> None:
    """
    Remove database-level immutability triggers.

    WARNING: Only for teardown and controlled migrations.  Re-install the
    triggers immediately afterwards.
    """
    dialect = _dialect_name(engine)
    with engine.connect() as conn:
        if dialect == "postgresql":
            conn.execute(text(_load_sql_file(dialect, DROP_FILE)))
        else:
            for name in TRIGGER_NAMES[dialect]:
                conn.execute(text(f"DROP TRIGGER IF EXISTS {name}"))
        conn.commit()
    logger.warning("immutability_triggers_uninstalled", extra={"dialect": dialect})


def get_installed_triggers(engine: Engine) -> list[str]:
    """
    Get the list of installed immutability triggers, sorted by name.
    """
    dialect = _dialect_name(engine)
    expected = TRIGGER_NAMES[dialect]
    names = ", ".join(f"'{name}'" for name in expected)
    if dialect == "postgresql":
        query = f"SELECT tgname FROM pg_trigger WHERE tgname IN ({names}) ORDER BY tgname"
    else:
        query = (
            "SELECT name FROM sqlite_master "
            f"WHERE type = 'trigger' AND name IN ({names}) ORDER BY name"
        )
    with engine.connect() as conn:
        return [row[0] for row in conn.execute(text(query))]


def triggers_installed(engine: Engine) -> bool:
    """True iff every trigger expected for the dialect is installed."""
    return not get_missing_triggers(engine)


def get_missing_triggers(engine: Engine) -> list[str]:
    """
    Get the immutability triggers that should be installed but aren't.
    """
    installed = set(get_installed_triggers(engine))
    expected = set(TRIGGER_NAMES[_dialect_name(engine)])
    return sorted(expected - installed)
