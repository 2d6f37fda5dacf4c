"""
Ledger event storage adapters
Database adapters for persisting the confirmed event history
"""

from typing import Dict, List, Optional
from datetime import datetime, UTC
import json
import structlog
from sqlalchemy import create_engine, Column, String, DateTime, Text, Integer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from .events import LedgerEvent
from ..exceptions import ExternalFailureError

logger = structlog.get_logger(__name__)

Base = declarative_base()


class LedgerEventDB(Base):
    """SQLAlchemy model for confirmed ledger events"""
    __tablename__ = "ledger_events"

    sequence = Column(Integer, primary_key=True)
    block_number = Column(Integer, nullable=False, index=True)
    tx_index = Column(Integer, nullable=False)
    mutation_id = Column(String, nullable=False, unique=True)
    kind = Column(String, nullable=False, index=True)
    actor = Column(String, nullable=False, index=True)
    state_key = Column(String, nullable=False, index=True)
    payload = Column(Text, nullable=False)  # JSON string
    timestamp = Column(DateTime(timezone=True), nullable=False)

    previous_hash = Column(String, nullable=False)
    hash = Column(String, nullable=False)


class EventStorage:
    """Storage adapter interface for the event history"""

    def append_event(self, event: LedgerEvent) -> None:
        raise NotImplementedError

    def load_events(self, from_sequence: int = 1) -> List[LedgerEvent]:
        raise NotImplementedError

    def has_mutation(self, mutation_id: str) -> bool:
        raise NotImplementedError


class SqlEventStorage(EventStorage):
    """SQLAlchemy-backed event history"""

    def __init__(self, database_url: Optional[str] = None):
        # Default to SQLite for development
        self.database_url = database_url or "sqlite:///ledger.db"
        self.engine = create_engine(self.database_url)
        self.SessionLocal = sessionmaker(bind=self.engine)

        # Create tables
        Base.metadata.create_all(bind=self.engine)

    def _to_db_model(self, event: LedgerEvent) -> LedgerEventDB:
        """Convert LedgerEvent to database model"""
        return LedgerEventDB(
            sequence=event.sequence,
            block_number=event.block_number,
            tx_index=event.tx_index,
            mutation_id=event.mutation_id,
            kind=event.kind,
            actor=event.actor,
            state_key=event.key,
            payload=json.dumps(event.payload, sort_keys=True, default=str),
            timestamp=event.timestamp,
            previous_hash=event.previous_hash,
            hash=event.hash,
        )

    def _from_db_model(self, db_event: LedgerEventDB) -> LedgerEvent:
        """Convert database model to LedgerEvent"""
        timestamp: datetime = db_event.timestamp
        if timestamp.tzinfo is None:
            # SQLite drops the offset; events are always written in UTC
            timestamp = timestamp.replace(tzinfo=UTC)
        return LedgerEvent(
            sequence=db_event.sequence,
            block_number=db_event.block_number,
            tx_index=db_event.tx_index,
            mutation_id=db_event.mutation_id,
            kind=db_event.kind,
            actor=db_event.actor,
            key=db_event.state_key,
            payload=json.loads(db_event.payload),
            timestamp=timestamp,
            previous_hash=db_event.previous_hash,
            hash=db_event.hash,
        )

    def append_event(self, event: LedgerEvent) -> None:
        """Persist a confirmed event; failures are surfaced, never swallowed"""
        try:
            with self.SessionLocal() as session:
                session.add(self._to_db_model(event))
                session.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to persist ledger event", sequence=event.sequence, error=str(e))
            raise ExternalFailureError(
                "Ledger persistence failed",
                operation="submit",
                details={"sequence": event.sequence, "reason": str(e)},
            ) from e

        logger.debug("Stored ledger event", sequence=event.sequence, kind=event.kind)

    def load_events(self, from_sequence: int = 1) -> List[LedgerEvent]:
        """Load the history in sequence order"""
        try:
            with self.SessionLocal() as session:
                db_events = (
                    session.query(LedgerEventDB)
                    .filter(LedgerEventDB.sequence >= from_sequence)
                    .order_by(LedgerEventDB.sequence)
                    .all()
                )
                return [self._from_db_model(db_event) for db_event in db_events]
        except SQLAlchemyError as e:
            logger.error("Failed to load ledger events", from_sequence=from_sequence, error=str(e))
            raise ExternalFailureError(
                "Ledger history unavailable",
                operation="history",
                details={"reason": str(e)},
            ) from e

    def has_mutation(self, mutation_id: str) -> bool:
        with self.SessionLocal() as session:
            return session.query(LedgerEventDB).filter_by(mutation_id=mutation_id).first() is not None


class InMemoryEventStorage(EventStorage):
    """In-memory event history for testing"""

    def __init__(self):
        self.events: List[LedgerEvent] = []
        self.mutation_ids: Dict[str, int] = {}

    def append_event(self, event: LedgerEvent) -> None:
        self.events.append(event)
        self.mutation_ids[event.mutation_id] = event.sequence

    def load_events(self, from_sequence: int = 1) -> List[LedgerEvent]:
        return [e for e in self.events if e.sequence >= from_sequence]

    def has_mutation(self, mutation_id: str) -> bool:
        return mutation_id in self.mutation_ids
