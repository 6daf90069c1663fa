"""Settlement record store backed by the SQLAlchemy session factory."""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence

from loguru import logger
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from app import crud, schemas
from app.core.config import Settings
from app.db import session_scope
from app.repositories import SettlementRecordInput, UserVoteInput

from .errors import DuplicateSettlementError, SettlementError, SettlementPersistenceError


class DuplicateVoteError(SettlementError):
    def __init__(self, user_address: str, market_id: int) -> None:
        super().__init__(f"{user_address} has already voted on market {market_id}")
        self.user_address = user_address
        self.market_id = market_id


class SettlementStore:
    """Append-only persistence for settlement records and the votes they summarise.

    Every call runs in its own short transaction so the store can be shared by
    the scheduler thread, scan workers and façade callers. The unique index on
    ``settlement_records.market_id`` is the authoritative at-most-once guard:
    :meth:`insert` turns a violation into :class:`DuplicateSettlementError`.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        *,
        retry_attempts: int = 3,
        retry_backoff: Sequence[float] = (1.0, 2.0, 4.0),
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._retry_attempts = max(1, retry_attempts)
        self._retry_backoff = tuple(retry_backoff) or (1.0,)
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: sessionmaker[Session] | None = None,
        **kwargs,
    ) -> "SettlementStore":
        return cls(
            session_factory,
            retry_attempts=settings.settlement_db_retry_attempts,
            retry_backoff=settings.settlement_db_retry_backoff_schedule,
            **kwargs,
        )

    def _scope(self):
        return session_scope(self._session_factory)

    # ------------------------------------------------------------------
    # Settlement records

    def exists(self, market_id: int) -> bool:
        with self._scope() as session:
            return crud.settlement_exists(session, market_id)

    def insert(self, payload: SettlementRecordInput) -> schemas.SettlementRecord:
        attempt = 0
        while True:
            attempt += 1
            try:
                with self._scope() as session:
                    return crud.insert_settlement(session, payload)
            except IntegrityError as exc:
                if self.exists(payload.market_id):
                    raise DuplicateSettlementError(payload.market_id) from exc
                raise SettlementPersistenceError(payload.market_id, attempt, exc) from exc
            except OperationalError as exc:
                if attempt >= self._retry_attempts:
                    raise SettlementPersistenceError(payload.market_id, attempt, exc) from exc
                delay = self._retry_backoff[min(attempt - 1, len(self._retry_backoff) - 1)]
                logger.warning(
                    "Transient database error writing settlement for market {} (attempt {}/{}); retrying in {}s: {}",
                    payload.market_id,
                    attempt,
                    self._retry_attempts,
                    delay,
                    exc,
                )
                self._sleep(delay)

    def find_by_market(self, market_id: int) -> schemas.SettlementRecord | None:
        with self._scope() as session:
            return crud.get_settlement(session, market_id)

    def find_by_participant(self, address: str) -> list[schemas.SettlementRecord]:
        with self._scope() as session:
            return crud.list_participant_settlements(session, address)

    def list_recent(self, *, limit: int = 50) -> list[schemas.SettlementRecord]:
        with self._scope() as session:
            return crud.list_recent_settlements(session, limit=limit)

    def recorded_market_ids(self, market_ids: Sequence[int]) -> set[int]:
        with self._scope() as session:
            return crud.recorded_market_ids(session, market_ids)

    # ------------------------------------------------------------------
    # Votes

    def record_vote(self, payload: UserVoteInput) -> schemas.UserVote:
        try:
            with self._scope() as session:
                if crud.get_user_vote(session, payload.user_address, payload.market_id):
                    raise DuplicateVoteError(payload.user_address, payload.market_id)
                return crud.record_user_vote(session, payload)
        except IntegrityError as exc:
            raise DuplicateVoteError(payload.user_address, payload.market_id) from exc

    def votes_for_market(self, market_id: int) -> list[schemas.UserVote]:
        with self._scope() as session:
            return crud.list_market_votes(session, market_id)

    def votes_for_user(self, user_address: str) -> list[schemas.UserVote]:
        with self._scope() as session:
            return crud.list_user_votes(session, user_address)
