"""
Configuration Loader.

Reads config.yaml. The broker password may be kept out of the file and
supplied through the ESP32_MQTT_PASSWORD environment variable instead.
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, Union

import yaml

logger = logging.getLogger(__name__)

PASSWORD_ENV_VAR = "ESP32_MQTT_PASSWORD"


def load_config(config_path: Union[str, Path] = "config.yaml") -> Dict[str, Any]:
    """
    Loads the YAML configuration file. A missing file yields an empty config.
    """
    path = Path(config_path)
    config: Dict[str, Any] = {}
    if not path.exists():
        logger.warning(f"Config file not found at {path}. Using defaults.")
    else:
        try:
            with open(path, 'r') as f:
                config = yaml.safe_load(f) or {}
                logger.info(f"Loaded configuration from {path}")
        except Exception as e:
            logger.error(f"Failed to parse config file: {e}")
            raise

    password = os.environ.get(PASSWORD_ENV_VAR)
    if password:
        config.setdefault('mqtt', {})['password'] = password
        logger.info(f"Broker password taken from {PASSWORD_ENV_VAR}.")
    return config
