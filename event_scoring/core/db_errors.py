"""
Typed classification of driver integrity errors.

Lets services tell "row already exists" apart from other constraint
failures without reading the error message.
"""
from sqlalchemy.exc import IntegrityError

# SQLSTATE unique_violation (PostgreSQL)
PG_UNIQUE_VIOLATION = "23505"

# Extended result codes (SQLite)
SQLITE_CONSTRAINT_UNIQUE = 2067
SQLITE_CONSTRAINT_PRIMARYKEY = 1555


def is_unique_violation(exc: IntegrityError) -> bool:
    """True when the driver reports a unique / primary key violation."""
    orig = getattr(exc, "orig", None)
    if orig is None:
        return False

    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate is not None:
        return sqlstate == PG_UNIQUE_VIOLATION

    errorcode = getattr(orig, "sqlite_errorcode", None)
    if errorcode is not None:
        return errorcode in (SQLITE_CONSTRAINT_UNIQUE, SQLITE_CONSTRAINT_PRIMARYKEY)

    return False
