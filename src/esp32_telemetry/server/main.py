"""
Main entry point for the ESP32 Telemetry Bridge.

This module is responsible for:
- Loading the YAML configuration.
- Building the repository, the reading pipeline and the MQTTManager.
- Connecting to the broker once at startup.
- Periodically logging the latest stored reading.
- Disconnecting cleanly on SIGINT/SIGTERM.
"""

import asyncio
import logging
import signal

from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from esp32_telemetry.server.config_loader import load_config
from esp32_telemetry.server.decoder import ReadingPipeline
from esp32_telemetry.server.models import BrokerConfig
from esp32_telemetry.server.mqtt import MQTTManager
from esp32_telemetry.server.repository import SqlAlchemyReadingRepository, create_engine_from_config

def setup_logging():
    """
    Configures the global logging settings for the entire application.
    This should be called as early as possible during startup.
    """
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)-8s] %(name)s.%(funcName)s: %(message)s'
    )

logger = logging.getLogger(__name__)

async def heartbeat_loop(pipeline: ReadingPipeline, mqtt_manager: MQTTManager, interval: float = 60):
    """Background task that logs the latest reading and the ingestion counters."""
    logger.info("Heartbeat loop started.")
    try:
        while True:
            await asyncio.sleep(interval)
            latest = pipeline.get_latest_reading()
            logger.info(
                f"Broker: {mqtt_manager.state.value} | stats: {pipeline.stats()} | "
                f"latest: {latest.to_json() if latest else 'none yet'}"
            )
    except asyncio.CancelledError:
        logger.info("Heartbeat loop stopped.")

def build_services(config: Dict[str, Any]) -> Tuple[ReadingPipeline, MQTTManager]:
    """Wires repository -> pipeline -> MQTTManager from the loaded config."""
    broker_config = BrokerConfig.from_dict(config)
    logger.info(f"mqtt.client_id = {broker_config.client_id}")

    repository = SqlAlchemyReadingRepository(create_engine_from_config(config))
    repository.create_schema()

    pipeline = ReadingPipeline(repository)
    mqtt_manager = MQTTManager(config=broker_config, pipeline=pipeline)
    return pipeline, mqtt_manager

async def shutdown(signal_name: str, mqtt_manager: MQTTManager):
    """Graceful shutdown handler."""
    logger.info(f"Received exit signal {signal_name}...")

    mqtt_manager.disconnect()

    # Cancel everything else, including the runner waiting forever
    tasks = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
    for task in tasks:
        task.cancel()

    await asyncio.gather(*tasks, return_exceptions=True)

async def main_application_runner(config_path: Optional[Union[str, Path]] = None):
    setup_logging()
    logger.info("Starting ESP32 telemetry bridge...")

    # Load config
    script_dir = Path(__file__).parent
    config: Dict[str, Any] = load_config(config_path or script_dir / "config.yaml")

    loop = asyncio.get_running_loop()

    pipeline, mqtt_manager = build_services(config)

    # Failures are logged inside; the bridge keeps running either way
    mqtt_manager.connect()

    heartbeat_task = asyncio.create_task(
        heartbeat_loop(pipeline, mqtt_manager, float(config.get('heartbeat_interval', 60)))
    )

    # Setup Signal Handlers for OS interrupts
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(
            sig,
            lambda s=sig: asyncio.create_task(shutdown(s.name, mqtt_manager))
        )

    logger.info("Telemetry bridge is running. Press Ctrl+C to exit.")

    try:
        await asyncio.Future()
    except asyncio.CancelledError:
        heartbeat_task.cancel()
        logger.info("Telemetry bridge stopped.")

def run():
    try:
        asyncio.run(main_application_runner())
    except KeyboardInterrupt:
        # Handled by the signal handler, but good to catch here just in case.
        pass

if __name__ == "__main__":
    run()
