"""
Pytest Configuration and Fixtures for the esp32_telemetry project.

Provides sample payloads and a fake repository so the pipeline and the
MQTT manager can be tested without a broker or a database.
"""

import itertools
import json
import sys
import dataclasses
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import logging

from esp32_telemetry.server.models import Reading


@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """
    Configures the Python logging framework globally for all tests.
    Because tests bypass main.py, this ensures our logs are formatted
    and visible exactly how we want them during test runs.
    """
    formatter = logging.Formatter(fmt="%(levelname)-8s %(message)s - %(funcName)s:%(lineno)d ")
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(formatter)
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)


@pytest.fixture
def valid_message() -> dict:
    """The reading an ESP32 board publishes (Scenario A)."""
    return {
        "temperature": 21.5,
        "humidity": 55.0,
        "luminosite_raw": 300,
        "humidite_sol_raw": 450,
        "macAddress": "AA:BB:CC:DD:EE:FF",
    }


@pytest.fixture
def to_payload():
    """Encodes a dict the way the board firmware does."""
    def _encode(message: dict) -> bytes:
        return json.dumps(message).encode("utf-8")
    return _encode


@pytest.fixture
def repository():
    """
    A repository mock whose save() behaves like the real one:
    it returns the reading with an id and a timestamp assigned.
    """
    ids = itertools.count(1)

    def _save(reading: Reading) -> Reading:
        return dataclasses.replace(reading, id=next(ids), recorded_at=datetime.now(timezone.utc))

    repo = MagicMock()
    repo.save.side_effect = _save
    return repo
