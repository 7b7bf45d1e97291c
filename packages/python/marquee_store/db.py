from datetime import datetime, timezone
from typing import Any, Sequence

from sqlalchemy import Table, create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.pool import StaticPool

from marquee_core.errors import ConfigurationError
from marquee_store.tables import metadata


def get_engine(database_url: str | None) -> Engine:
    if not database_url:
        raise ConfigurationError("DATABASE_URL not set")
    url = make_url(database_url)
    # Prefer psycopg (v3, self-contained wheels) to avoid local libpq issues
    if url.drivername in ("postgresql", "postgresql+psycopg2"):
        url = url.set(drivername="postgresql+psycopg")
    if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
        # one shared connection, or every thread would see its own empty database
        return create_engine(url, poolclass=StaticPool, connect_args={"check_same_thread": False})
    return create_engine(url)


def create_schema(engine: Engine) -> None:
    metadata.create_all(engine)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_ts(value: Any) -> datetime | None:
    """Normalize timestamps coming back from Postgres or SQLite into tz-aware datetimes."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        normalized = raw.replace("Z", "+00:00") if raw.endswith("Z") else raw
        try:
            parsed = datetime.fromisoformat(normalized)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def upsert(
    conn: Connection,
    table: Table,
    rows: Sequence[dict[str, Any]],
    *,
    conflict_cols: Sequence[str],
    update_cols: Sequence[str] | None = None,
) -> None:
    """
    insert ... on conflict (conflict_cols) do update set col = excluded.col

    update_cols defaults to every supplied column outside the conflict key;
    an empty list turns the statement into on conflict do nothing.
    """
    if not rows:
        return
    dialect = conn.dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(table).values(list(rows))
    elif dialect == "sqlite":
        stmt = sqlite.insert(table).values(list(rows))
    else:
        raise ConfigurationError(f"upsert not supported for dialect {dialect!r}")

    if update_cols is None:
        update_cols = [c for c in rows[0] if c not in conflict_cols]
    if not update_cols:
        conn.execute(stmt.on_conflict_do_nothing(index_elements=list(conflict_cols)))
        return
    stmt = stmt.on_conflict_do_update(
        index_elements=list(conflict_cols),
        set_={c: stmt.excluded[c] for c in update_cols},
    )
    conn.execute(stmt)
