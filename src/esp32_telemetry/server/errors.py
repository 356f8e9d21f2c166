"""
Error Taxonomy of the Telemetry Bridge.

Every failure the ingestion path can hit has its own exception type so the
decoder, the repository and the MQTT manager can raise precisely and the
boundaries (`MQTTManager.connect`, `ReadingPipeline.process`) can report
what went wrong without string matching.
"""


class TelemetryBridgeError(Exception):
    """Base class for all errors raised by the bridge."""


class BrokerConnectionError(TelemetryBridgeError):
    """Client construction, authentication, connect or subscribe failed."""


class DecodeError(TelemetryBridgeError):
    """The payload is not a JSON object or a numeric field is missing/mistyped."""


class ValidationError(TelemetryBridgeError):
    """The payload decoded fine but breaks a business rule (device identifier)."""


class PersistenceError(TelemetryBridgeError):
    """The repository could not store the reading."""
