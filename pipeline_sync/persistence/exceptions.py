"""Persistence layer exceptions.

Everything raised by the database and repository modules derives from
PersistenceError. The PersistenceAdapter catches it and degrades to a
cache miss, so storage problems never reach the orchestrator.
"""


class PersistenceError(Exception):
    """Base exception for client-state storage errors."""

    pass


class DatabaseConnectionError(PersistenceError):
    """The state database could not be opened or is not initialized.

    Examples:
    - Empty or malformed STATE_DATABASE_URL
    - Database directory not writable
    - get_session() called before init_database()
    """

    pass


class DataIntegrityError(PersistenceError):
    """A write violated a constraint, or a stored value is not valid JSON."""

    pass
