"""ORM model for the client-state key/value table."""

import logging

from sqlalchemy import Column, String, Text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

logger = logging.getLogger(__name__)

Base = declarative_base()


class ClientStateModel(Base):
    """One JSON document per key.

    ``value`` holds the serialized snapshot; ``updated_at`` is an ISO 8601
    UTC string, as written by ``format_timestamp``.
    """

    __tablename__ = "client_state"

    key = Column(String(128), primary_key=True, nullable=False)
    value = Column(Text, nullable=False)
    updated_at = Column(String(50), nullable=False)

    def __repr__(self) -> str:
        return f"<ClientStateModel(key={self.key!r}, updated_at={self.updated_at!r})>"


def create_schema(engine: Engine) -> None:
    """Create the client_state table if it does not exist (idempotent)."""
    try:
        Base.metadata.create_all(engine, checkfirst=True)
        logger.debug("Client state schema ready")
    except Exception as e:
        logger.error(f"Failed to create database schema: {e}", exc_info=True)
        raise
