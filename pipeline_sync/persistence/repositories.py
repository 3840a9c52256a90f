"""Key/value repository over the client_state table."""

import json
import logging
from typing import Any, Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from pipeline_sync.utils.timestamps import format_timestamp, utc_now

from .exceptions import DataIntegrityError, PersistenceError
from .schema import ClientStateModel

logger = logging.getLogger(__name__)


class StateRepository:
    """Stores JSON-serializable documents under string keys."""

    def __init__(self, session: Session):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy session for database operations
        """
        self.session = session

    def get(self, key: str) -> Optional[Any]:
        """Load the document stored under ``key``.

        Returns:
            The decoded JSON value, or None when the key is absent

        Raises:
            DataIntegrityError: If the stored value is not valid JSON
            PersistenceError: If a database error occurs
        """
        try:
            model = self.session.get(ClientStateModel, key)
        except SQLAlchemyError as e:
            logger.error(f"Error reading state key {key}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to read state: {e}") from e

        if model is None:
            return None

        try:
            return json.loads(model.value)
        except ValueError as e:
            raise DataIntegrityError(f"Stored value for {key!r} is not valid JSON: {e}") from e

    def put(self, key: str, value: Any) -> None:
        """Insert or replace the document stored under ``key``.

        Raises:
            DataIntegrityError: If the value cannot be serialized or violates a constraint
            PersistenceError: If a database error occurs
        """
        try:
            encoded = json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise DataIntegrityError(f"Value for {key!r} is not JSON-serializable: {e}") from e

        now = format_timestamp(utc_now())
        try:
            existing = self.session.get(ClientStateModel, key)
            if existing is not None:
                existing.value = encoded
                existing.updated_at = now
            else:
                self.session.add(ClientStateModel(key=key, value=encoded, updated_at=now))
            self.session.flush()
        except IntegrityError as e:
            logger.error(f"Integrity error writing state key {key}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to write state due to constraint violation: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error writing state key {key}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to write state: {e}") from e

    def delete(self, key: str) -> bool:
        """Remove ``key``.

        Returns:
            True if a row was deleted
        """
        try:
            result = self.session.execute(
                delete(ClientStateModel).where(ClientStateModel.key == key)
            )
            return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error(f"Error deleting state key {key}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to delete state: {e}") from e

