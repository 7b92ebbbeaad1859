"""JSON column helpers shared by the repository mixins."""
from contextlib import contextmanager
from typing import Any, Optional

import orjson


def dumps(value: Any) -> Optional[str]:
    """Serialize a value for a VARCHAR JSON column."""
    if value is None:
        return None
    return orjson.dumps(value, default=str).decode()


def loads(value: Optional[str], default: Any = None) -> Any:
    """Deserialize a VARCHAR JSON column, tolerating NULL."""
    if value is None or value == "":
        return default
    return orjson.loads(value)


@contextmanager
def transaction(conn):
    """BEGIN/COMMIT around a block on a DuckDB connection; ROLLBACK on error."""
    conn.execute("BEGIN TRANSACTION")
    try:
        yield conn
    except Exception:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")
