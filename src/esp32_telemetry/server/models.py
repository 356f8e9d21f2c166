"""
Data Models for Sensor Readings, Ingestion Outcomes and Broker Settings.

Defines the immutable value types shared by the MQTT layer,
the decoding pipeline and the repository.
"""
from dataclasses import dataclass, field, asdict
import json
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

from enum import Enum

from esp32_telemetry.server.errors import BrokerConnectionError


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CONNECTION_LOST = "connection_lost"


class IngestStatus(str, Enum):
    STORED = "stored"
    DECODE_ERROR = "decode_error"
    VALIDATION_ERROR = "validation_error"
    PERSISTENCE_ERROR = "persistence_error"

# --- Domain values ---

@dataclass(frozen=True, kw_only=True)
class Reading:
    """One decoded sensor sample sent by a board."""
    temperature: float
    humidity: float
    luminosity_raw: int
    soil_humidity_raw: int
    device_id: str
    # Both are assigned by the repository when the reading is stored
    recorded_at: Optional[datetime] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["recorded_at"] = self.recorded_at.isoformat() if self.recorded_at else None
        return data

    def to_json(self) -> str:
        """Converts the reading to a JSON string."""
        return json.dumps(self.to_dict())


@dataclass(frozen=True, kw_only=True)
class IngestOutcome:
    """
    Result of one decode-validate-persist-cache cycle.

    `reading` is the stored reading on success, `error` a human readable
    diagnostic otherwise.
    """
    status: IngestStatus
    reading: Optional[Reading] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is IngestStatus.STORED

# --- Configuration ---

_PLAIN_SCHEMES = {"tcp": 1883, "mqtt": 1883}
_TLS_SCHEMES = {"ssl": 8883, "mqtts": 8883}


@dataclass(frozen=True, kw_only=True)
class BrokerConfig:
    """
    Static broker settings, built once at startup from the `mqtt` section
    of config.yaml.
    """
    broker_url: str = "tcp://localhost:1883"
    topic: str = "esp32/capteurs"
    client_id: str = "esp32-telemetry-bridge"
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    qos: int = 1
    keepalive: int = 60
    reconnect_min_delay: int = 1
    reconnect_max_delay: int = 120

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "BrokerConfig":
        mqtt_conf = (config or {}).get('mqtt', {}) or {}
        defaults = cls()
        return cls(
            broker_url=mqtt_conf.get('broker', defaults.broker_url),
            topic=mqtt_conf.get('topic', defaults.topic),
            client_id=mqtt_conf.get('client_id', defaults.client_id),
            username=mqtt_conf.get('username', defaults.username),
            password=mqtt_conf.get('password', defaults.password),
            qos=int(mqtt_conf.get('qos', defaults.qos)),
            keepalive=int(mqtt_conf.get('keepalive', defaults.keepalive)),
            reconnect_min_delay=int(mqtt_conf.get('reconnect_min_delay', defaults.reconnect_min_delay)),
            reconnect_max_delay=int(mqtt_conf.get('reconnect_max_delay', defaults.reconnect_max_delay)),
        )

    @property
    def scheme(self) -> str:
        scheme = urlsplit(self.broker_url).scheme.lower()
        if scheme not in _PLAIN_SCHEMES and scheme not in _TLS_SCHEMES:
            raise BrokerConnectionError(f"Unsupported broker URL scheme in '{self.broker_url}'")
        return scheme

    @property
    def use_tls(self) -> bool:
        return self.scheme in _TLS_SCHEMES

    @property
    def host(self) -> str:
        host = urlsplit(self.broker_url).hostname
        if not host:
            raise BrokerConnectionError(f"No host in broker URL '{self.broker_url}'")
        return host

    @property
    def port(self) -> int:
        try:
            port = urlsplit(self.broker_url).port
        except ValueError as e:
            raise BrokerConnectionError(f"Invalid port in broker URL '{self.broker_url}'") from e
        if port is None:
            scheme = self.scheme
            return _TLS_SCHEMES.get(scheme) or _PLAIN_SCHEMES[scheme]
        return port
