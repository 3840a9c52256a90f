"""Cross-session snapshot of the pipeline state.

Only the fields worth keeping across restarts are stored: the last sync
(time, outcome, freshness), the metrics and the most recent discoveries.
Live run fields always start from idle because a run in flight cannot be
resumed by a new session.
"""

from datetime import datetime
from typing import Callable, ContextManager, List, Optional, Union

from pydantic import Field, ValidationError, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pipeline_sync.domain.models import (
    CamelModel,
    CompanyDiscovery,
    DataFreshness,
    PipelineMetrics,
    PipelineState,
)
from pipeline_sync.logging import get_logger
from pipeline_sync.utils.timestamps import ensure_utc

from .database import get_session
from .exceptions import PersistenceError
from .repositories import StateRepository

logger = get_logger(__name__, component="persistence")

STATE_KEY = "pipelineState"
PERSISTED_DISCOVERY_LIMIT = 10


class PersistedState(CamelModel):
    """The stored projection of PipelineState (camelCase JSON)."""

    last_sync_time: Optional[datetime] = None
    last_sync_success: bool = False
    data_freshness: DataFreshness = DataFreshness.UNKNOWN
    metrics: PipelineMetrics = Field(default_factory=PipelineMetrics)
    recent_discoveries: List[CompanyDiscovery] = Field(default_factory=list)

    @field_validator("last_sync_time")
    @classmethod
    def last_sync_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class PersistenceAdapter:
    """
    Saves and loads the PersistedState under one key of the client_state table.

    Storage failures are logged and reported as ``False``/``None``; they
    never propagate to the caller.
    """

    def __init__(
        self,
        key: str = STATE_KEY,
        discovery_limit: int = PERSISTED_DISCOVERY_LIMIT,
        session_factory: Callable[[], ContextManager[Session]] = get_session,
    ):
        self.key = key
        self.discovery_limit = discovery_limit
        self._session_factory = session_factory

    def snapshot(self, state: PipelineState) -> PersistedState:
        return PersistedState(
            last_sync_time=state.last_sync_time,
            last_sync_success=state.last_sync_success,
            data_freshness=state.data_freshness,
            metrics=state.metrics,
            recent_discoveries=state.recent_discoveries[: self.discovery_limit],
        )

    def save(self, state: Union[PipelineState, PersistedState]) -> bool:
        """
        Store the snapshot of ``state``.

        Args:
            state: Full state, or an already projected PersistedState

        Returns:
            True when the write succeeded
        """
        snapshot = state if isinstance(state, PersistedState) else self.snapshot(state)
        payload = snapshot.model_dump(mode="json", by_alias=True)

        try:
            with self._session_factory() as session:
                StateRepository(session).put(self.key, payload)
        except (PersistenceError, SQLAlchemyError) as e:
            logger.warning(
                f"Failed to save pipeline state: {e}",
                extra={"event": "persistence.save.failed", "key": self.key, "error_type": type(e).__name__},
            )
            return False

        logger.debug(
            "Pipeline state saved",
            extra={
                "event": "persistence.saved",
                "key": self.key,
                "discovery_count": len(snapshot.recent_discoveries),
            },
        )
        return True

    def load(self) -> Optional[PersistedState]:
        """
        Read the stored snapshot.

        Returns:
            PersistedState, or None when nothing is stored or the stored
            document is unreadable
        """
        try:
            with self._session_factory() as session:
                raw = StateRepository(session).get(self.key)
        except (PersistenceError, SQLAlchemyError) as e:
            logger.warning(
                f"Failed to load pipeline state: {e}",
                extra={"event": "persistence.load.failed", "key": self.key, "error_type": type(e).__name__},
            )
            return None

        if raw is None:
            logger.debug("No persisted pipeline state", extra={"event": "persistence.load.empty", "key": self.key})
            return None

        try:
            return PersistedState.model_validate(raw)
        except ValidationError as e:
            logger.warning(
                "Ignoring corrupt persisted pipeline state",
                extra={
                    "event": "persistence.load.corrupt",
                    "key": self.key,
                    "error_count": e.error_count(),
                },
            )
            return None

    def apply(self, state: PipelineState, snapshot: PersistedState) -> PipelineState:
        """Rehydrate the persisted fields; status and progress are left untouched."""
        return state.model_copy(
            update={
                "last_sync_time": snapshot.last_sync_time,
                "last_sync_success": snapshot.last_sync_success,
                "data_freshness": snapshot.data_freshness,
                "metrics": snapshot.metrics,
                "recent_discoveries": list(snapshot.recent_discoveries),
            }
        )

    def clear(self) -> bool:
        try:
            with self._session_factory() as session:
                return StateRepository(session).delete(self.key)
        except (PersistenceError, SQLAlchemyError) as e:
            logger.warning(
                f"Failed to clear pipeline state: {e}",
                extra={"event": "persistence.clear.failed", "key": self.key},
            )
            return False
