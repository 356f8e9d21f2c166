"""
Reading Persistence.

Insert-only storage for decoded readings. The pipeline only depends on the
`ReadingRepository` protocol; `SqlAlchemyReadingRepository` is the
implementation wired in by main.py.
"""
import dataclasses
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    func,
    insert,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from esp32_telemetry.server.errors import PersistenceError
from esp32_telemetry.server.models import Reading

logger = logging.getLogger(__name__)

metadata = MetaData()

readings_table = Table(
    "readings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("temperature", Float, nullable=False),
    Column("humidity", Float, nullable=False),
    Column("luminosity_raw", Integer, nullable=False),
    Column("soil_humidity_raw", Integer, nullable=False),
    Column("device_id", String(64), nullable=False, index=True),
    Column("recorded_at", DateTime(timezone=True), nullable=False),
)


class ReadingRepository(Protocol):
    def save(self, reading: Reading) -> Reading:
        """Stores the reading and returns the stored form (id and timestamp set)."""
        ...


class SqlAlchemyReadingRepository:
    """
    Stores readings in the `readings` table through a SQLAlchemy engine.
    """
    engine: Engine

    def __init__(self, engine: Engine):
        self.engine = engine

    def create_schema(self):
        """Creates the readings table if it does not exist yet."""
        try:
            metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not create schema: {e}") from e
        logger.info("Readings table is ready.")

    def save(self, reading: Reading) -> Reading:
        recorded_at = datetime.now(timezone.utc)
        values = dataclasses.asdict(reading)
        values.pop("id")
        values["recorded_at"] = recorded_at

        try:
            with self.engine.begin() as conn:
                result = conn.execute(insert(readings_table).values(**values))
                new_id = result.inserted_primary_key[0]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not store reading from {reading.device_id}: {e}") from e

        logger.debug(f"Stored reading #{new_id} from {reading.device_id}")
        return dataclasses.replace(reading, id=new_id, recorded_at=recorded_at)

    def latest_for_device(self, device_id: str) -> Optional[Reading]:
        query = (
            select(readings_table)
            .where(readings_table.c.device_id == device_id)
            .order_by(readings_table.c.id.desc())
            .limit(1)
        )
        try:
            with self.engine.connect() as conn:
                row = conn.execute(query).mappings().first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load readings of {device_id}: {e}") from e
        if row is None:
            return None
        values = dict(row)
        # SQLite drops the offset; timestamps are always written in UTC
        if values["recorded_at"].tzinfo is None:
            values["recorded_at"] = values["recorded_at"].replace(tzinfo=timezone.utc)
        return Reading(**values)

    def count(self) -> int:
        try:
            with self.engine.connect() as conn:
                return conn.execute(select(func.count()).select_from(readings_table)).scalar_one()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not count readings: {e}") from e


def create_engine_from_config(config: Dict[str, Any]) -> Engine:
    """Builds the engine from the `database` section of config.yaml."""
    db_conf = (config or {}).get('database', {}) or {}
    url = db_conf.get('url', 'sqlite:///readings.db')
    engine = create_engine(url, echo=bool(db_conf.get('echo', False)), pool_pre_ping=True)
    logger.info(f"Using database {engine.url.render_as_string(hide_password=True)}")
    return engine
