"""
Reading Decoder and Latest-Reading Cache.

This module is responsible for:
- Turning raw MQTT payload bytes into a validated `Reading`.
- Handing the reading to the repository.
- Publishing the stored reading as the "latest reading" snapshot,
  readable from any thread.

The pipeline runs on the MQTT network thread, so `ReadingPipeline.process`
never raises: every failure is reported as an `IngestOutcome`.
"""
import json
import logging
import math
import threading
from collections import Counter
from typing import Any, Dict, Optional

from esp32_telemetry.server.errors import DecodeError, PersistenceError, ValidationError
from esp32_telemetry.server.models import IngestOutcome, IngestStatus, Reading
from esp32_telemetry.server.repository import ReadingRepository

logger = logging.getLogger(__name__)

# Wire keys as sent by the board firmware
TEMPERATURE_KEY = "temperature"
HUMIDITY_KEY = "humidity"
LUMINOSITY_KEY = "luminosite_raw"
SOIL_HUMIDITY_KEY = "humidite_sol_raw"
DEVICE_ID_KEY = "macAddress"


def _require(data: Dict[str, Any], key: str) -> Any:
    if key not in data or data[key] is None:
        raise DecodeError(f"Missing field '{key}'")
    return data[key]


def _read_float(data: Dict[str, Any], key: str) -> float:
    value = _require(data, key)
    if isinstance(value, bool):
        raise DecodeError(f"Field '{key}' is not a number: {value!r}")
    if not isinstance(value, (int, float, str)):
        raise DecodeError(f"Field '{key}' is not a number: {value!r}")
    try:
        number = float(value.strip() if isinstance(value, str) else value)
    except (OverflowError, ValueError):
        raise DecodeError(f"Field '{key}' is not a number: {value!r}") from None

    if not math.isfinite(number):
        raise DecodeError(f"Field '{key}' is not a finite number: {value!r}")
    return number


def _read_int(data: Dict[str, Any], key: str) -> int:
    value = _require(data, key)
    if isinstance(value, bool):
        raise DecodeError(f"Field '{key}' is not an integer: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            raise DecodeError(f"Field '{key}' is not an integer: {value!r}") from None
    # Fractional readings are truncated toward zero
    return int(_read_float(data, key))


def _read_device_id(data: Dict[str, Any]) -> str:
    device_id = data.get(DEVICE_ID_KEY)
    if not isinstance(device_id, str) or device_id == "":
        raise ValidationError("device identifier missing or invalid")
    return device_id


def decode_payload(payload: bytes) -> Reading:
    """
    Decodes one MQTT payload into a `Reading`.

    Numeric fields are checked before the device identifier, so a payload
    that is broken in both ways is reported as a `DecodeError`.

    Raises:
        DecodeError: the payload is not a UTF-8 JSON object, or a numeric
            field is missing or not numeric.
        ValidationError: `macAddress` is absent, not a string or empty.
    """
    try:
        data = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError, RecursionError) as e:
        raise DecodeError(f"Payload is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise DecodeError(f"Payload is not a JSON object but {type(data).__name__}")

    temperature = _read_float(data, TEMPERATURE_KEY)
    humidity = _read_float(data, HUMIDITY_KEY)
    luminosity_raw = _read_int(data, LUMINOSITY_KEY)
    soil_humidity_raw = _read_int(data, SOIL_HUMIDITY_KEY)
    device_id = _read_device_id(data)

    logger.debug(
        f"Extracted fields: temperature={temperature}, humidity={humidity}, "
        f"luminosity_raw={luminosity_raw}, soil_humidity_raw={soil_humidity_raw}, device_id={device_id}"
    )
    return Reading(
        temperature=temperature,
        humidity=humidity,
        luminosity_raw=luminosity_raw,
        soil_humidity_raw=soil_humidity_raw,
        device_id=device_id,
    )


class LatestReadingCache:
    """
    Single-slot holder of the most recently stored reading.

    Readings are immutable, so swapping the reference under the lock is
    enough for readers to always see a complete value.
    """
    def __init__(self):
        self._lock = threading.Lock()
        self._reading: Optional[Reading] = None

    def get(self) -> Optional[Reading]:
        with self._lock:
            return self._reading

    def set(self, reading: Reading):
        with self._lock:
            self._reading = reading


class ReadingPipeline:
    """
    Runs the decode-validate-persist-cache cycle for each inbound payload.
    """
    repository: ReadingRepository
    cache: LatestReadingCache

    def __init__(self, repository: ReadingRepository, cache: Optional[LatestReadingCache] = None):
        self.repository = repository
        self.cache = cache or LatestReadingCache()
        self._stats_lock = threading.Lock()
        self._stats: Counter = Counter()

    def process(self, payload: bytes) -> IngestOutcome:
        """
        Processes one payload. The cache only changes after a successful save.
        """
        try:
            reading = decode_payload(payload)
        except DecodeError as e:
            return self._record(IngestOutcome(status=IngestStatus.DECODE_ERROR, error=str(e)))
        except ValidationError as e:
            return self._record(IngestOutcome(status=IngestStatus.VALIDATION_ERROR, error=str(e)))

        try:
            stored = self.repository.save(reading)
        except PersistenceError as e:
            return self._record(IngestOutcome(status=IngestStatus.PERSISTENCE_ERROR, error=str(e)))
        except Exception as e:
            # Repositories other than ours may raise anything
            return self._record(IngestOutcome(status=IngestStatus.PERSISTENCE_ERROR, error=f"{type(e).__name__}: {e}"))

        self.cache.set(stored)
        return self._record(IngestOutcome(status=IngestStatus.STORED, reading=stored))

    def get_latest_reading(self) -> Optional[Reading]:
        """Returns the last stored reading, or None if nothing was stored yet."""
        return self.cache.get()

    def stats(self) -> Dict[str, int]:
        with self._stats_lock:
            snapshot = {status.value: self._stats[status] for status in IngestStatus}
            snapshot["received"] = sum(self._stats.values())
        return snapshot

    def _record(self, outcome: IngestOutcome) -> IngestOutcome:
        with self._stats_lock:
            self._stats[outcome.status] += 1
        return outcome
