"""
MQTT Connection Management.

This module is responsible for:
- Creating and configuring the `paho-mqtt` client (credentials, TLS,
  clean session, automatic reconnect back-off).
- Connecting to the broker and subscribing to the telemetry topic.
- Dispatching every inbound message to the `ReadingPipeline`.
- Logging connection losses; recovery is left to paho's network loop.
"""
import logging
import threading
from typing import Optional, Protocol

import paho.mqtt.client as mqtt

from esp32_telemetry.server.decoder import ReadingPipeline
from esp32_telemetry.server.models import BrokerConfig, ConnectionState, IngestOutcome, IngestStatus

logger = logging.getLogger(__name__)


class BrokerCallbacks(Protocol):
    """The callback set the transport drives for us."""

    def on_connection_lost(self, cause: Optional[str]) -> None: ...

    def on_message_arrived(self, topic: str, payload: bytes) -> None: ...

    def on_delivery_complete(self, mid: int) -> None: ...


class MQTTManager:
    config: BrokerConfig
    pipeline: ReadingPipeline
    _client: Optional[mqtt.Client]
    _state: ConnectionState
    _closing: bool

    """
    Owns the broker session and feeds inbound messages to the pipeline.

    paho calls the `_on_*` hooks from its network thread, concurrently with
    whatever thread calls `connect()`, so state changes go through `_lock`.
    """
    def __init__(self, config: BrokerConfig, pipeline: ReadingPipeline):
        self.config = config
        self.pipeline = pipeline

        # Internal state
        self._client = None
        self._state = ConnectionState.DISCONNECTED
        self._closing = False
        self._lock = threading.Lock()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def connect(self) -> bool:
        """
        Connects to the broker and starts paho's network loop.

        Safe to call repeatedly: once a session exists (or paho is busy
        re-establishing it) this returns without touching the client.
        Failures are logged and swallowed so the process keeps running.

        Returns False if the connection attempt failed.
        """
        with self._lock:
            if self._state is not ConnectionState.DISCONNECTED:
                logger.debug(f"connect() ignored, session is {self._state.value}")
                return True
            self._state = ConnectionState.CONNECTING

        try:
            if self._client is None:
                self._client = self._create_client()

            logger.info(f"Connecting to MQTT broker {self.config.host}:{self.config.port} as {self.config.client_id}...")
            self._client.connect(self.config.host, self.config.port, keepalive=self.config.keepalive)
            self._client.loop_start()
            return True

        except Exception as e:
            logger.error(f"MQTT connection error: {e}")
            with self._lock:
                self._state = ConnectionState.DISCONNECTED
            return False

    def disconnect(self):
        """
        Disconnects cleanly and stops the network loop. No-op when idle.
        """
        with self._lock:
            client = self._client
            if client is None or self._state is ConnectionState.DISCONNECTED:
                return
            self._closing = True

        try:
            client.disconnect()
            client.loop_stop()
            logger.info("Disconnected from MQTT broker.")
        except Exception as e:
            logger.warning(f"Error while disconnecting from MQTT broker: {e}")
        finally:
            with self._lock:
                self._state = ConnectionState.DISCONNECTED
                self._closing = False

    def _create_client(self) -> mqtt.Client:
        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.config.client_id,
            clean_session=True,
            protocol=mqtt.MQTTv311,
        )
        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password)
        if self.config.use_tls:
            client.tls_set()

        # paho's loop reconnects by itself, with this back-off
        client.reconnect_delay_set(
            min_delay=self.config.reconnect_min_delay,
            max_delay=self.config.reconnect_max_delay,
        )

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.on_publish = self._on_publish
        client.on_subscribe = self._on_subscribe
        return client

    # --- BrokerCallbacks ---

    def on_connection_lost(self, cause: Optional[str]) -> None:
        logger.warning(f"MQTT connection lost: {cause}. Waiting for automatic reconnect...")

    def on_message_arrived(self, topic: str, payload: bytes) -> None:
        logger.debug(f"Message received on '{topic}': {payload!r}")
        try:
            outcome = self.pipeline.process(payload)
        except Exception:
            # Never let anything escape into paho's dispatch loop
            logger.exception(f"Unexpected error while processing message on '{topic}'")
            return
        self._log_outcome(topic, outcome)

    def on_delivery_complete(self, mid: int) -> None:
        logger.debug(f"Delivery complete for message id {mid}.")

    # --- paho hooks (network thread) ---

    def _on_connect(self, client: mqtt.Client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error(f"MQTT broker refused the connection: {reason_code}")
            return

        with self._lock:
            self._state = ConnectionState.CONNECTED

        # The session is clean, so the subscription is gone after every reconnect
        try:
            result, mid = client.subscribe(self.config.topic, qos=self.config.qos)
        except Exception as e:
            logger.error(f"Failed to subscribe to '{self.config.topic}': {e}")
            return
        if result != mqtt.MQTT_ERR_SUCCESS:
            logger.error(f"Failed to subscribe to '{self.config.topic}': {mqtt.error_string(result)}")
            return
        logger.info(f"Connected to MQTT and subscribed to topic: {self.config.topic}")

    def _on_disconnect(self, client: mqtt.Client, userdata, disconnect_flags, reason_code, properties=None):
        with self._lock:
            requested = self._closing
            self._state = ConnectionState.DISCONNECTED if requested else ConnectionState.CONNECTION_LOST
        if not requested:
            self.on_connection_lost(str(reason_code))

    def _on_message(self, client: mqtt.Client, userdata, message: mqtt.MQTTMessage):
        self.on_message_arrived(message.topic, message.payload)

    def _on_publish(self, client: mqtt.Client, userdata, mid, reason_code=None, properties=None):
        self.on_delivery_complete(mid)

    def _on_subscribe(self, client: mqtt.Client, userdata, mid, reason_code_list, properties=None):
        for reason_code in reason_code_list:
            if reason_code.is_failure:
                logger.error(f"Broker rejected subscription to '{self.config.topic}': {reason_code}")

    def _log_outcome(self, topic: str, outcome: IngestOutcome):
        if outcome.ok:
            reading = outcome.reading
            logger.info(f"Reading #{reading.id} from {reading.device_id} stored.")
        elif outcome.status is IngestStatus.PERSISTENCE_ERROR:
            logger.error(f"Could not store reading from '{topic}': {outcome.error}")
        elif outcome.status is IngestStatus.VALIDATION_ERROR:
            logger.warning(f"Dropped invalid message on '{topic}': {outcome.error}")
        else:
            logger.warning(f"Dropped malformed message on '{topic}': {outcome.error}")
