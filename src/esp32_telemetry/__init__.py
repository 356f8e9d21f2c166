"""
esp32_telemetry

This package provides an MQTT ingestion bridge for ESP32 sensor boards:
it subscribes to a telemetry topic, validates every JSON reading,
stores it and keeps the latest stored reading at hand for other consumers.
"""
__version__ = "0.1.0"
