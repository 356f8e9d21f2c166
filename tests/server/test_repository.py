"""
Tests for the SQLAlchemy repository, against an in-memory SQLite database.
"""

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from esp32_telemetry.server.errors import PersistenceError
from esp32_telemetry.server.models import Reading
from esp32_telemetry.server.repository import SqlAlchemyReadingRepository, create_engine_from_config

@pytest.fixture
def sql_repository():
    repo = SqlAlchemyReadingRepository(create_engine("sqlite://"))
    repo.create_schema()
    return repo


@pytest.fixture
def reading():
    return Reading(
        temperature=21.5,
        humidity=55.0,
        luminosity_raw=300,
        soil_humidity_raw=450,
        device_id="AA:BB:CC:DD:EE:FF",
    )


def test_save_assigns_id_and_timestamp(sql_repository, reading):
    stored = sql_repository.save(reading)

    assert stored.id == 1
    assert isinstance(stored.recorded_at, datetime)
    # The input value is left untouched
    assert reading.id is None
    assert (stored.temperature, stored.humidity, stored.luminosity_raw, stored.soil_humidity_raw, stored.device_id) == \
        (21.5, 55.0, 300, 450, "AA:BB:CC:DD:EE:FF")


def test_save_is_insert_only(sql_repository, reading):
    first = sql_repository.save(reading)
    second = sql_repository.save(reading)

    assert second.id == first.id + 1
    assert sql_repository.count() == 2


def test_latest_for_device(sql_repository, reading):
    sql_repository.save(reading)
    newer = sql_repository.save(Reading(
        temperature=23.0, humidity=40.0, luminosity_raw=10, soil_humidity_raw=20, device_id=reading.device_id,
    ))
    sql_repository.save(Reading(
        temperature=5.0, humidity=90.0, luminosity_raw=1, soil_humidity_raw=2, device_id="11:22:33:44:55:66",
    ))

    latest = sql_repository.latest_for_device(reading.device_id)

    assert latest.id == newer.id
    assert latest.temperature == 23.0
    assert sql_repository.latest_for_device("00:00:00:00:00:00") is None


def test_latest_for_device_returns_utc_timestamp(sql_repository, reading):
    stored = sql_repository.save(reading)

    latest = sql_repository.latest_for_device(reading.device_id)

    assert latest.recorded_at.tzinfo is not None
    assert latest.recorded_at.utcoffset() == timedelta(0)
    assert latest.recorded_at == stored.recorded_at


def test_database_errors_become_persistence_errors(sql_repository, reading):
    with patch.object(Engine, "begin", side_effect=OperationalError("INSERT", {}, Exception("locked"))):
        with pytest.raises(PersistenceError) as excinfo:
            sql_repository.save(reading)

    assert isinstance(excinfo.value.__cause__, OperationalError)


def test_save_without_schema_fails_cleanly(reading):
    repo = SqlAlchemyReadingRepository(create_engine("sqlite://"))

    with pytest.raises(PersistenceError, match="AA:BB:CC:DD:EE:FF"):
        repo.save(reading)


def test_create_engine_from_config_defaults_and_overrides():
    engine = create_engine_from_config({"database": {"url": "sqlite://"}})
    assert engine.url.drivername == "sqlite"
    assert engine.url.database is None

    default_engine = create_engine_from_config({})
    assert default_engine.url.database == "readings.db"
