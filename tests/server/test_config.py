"""
Tests for config.yaml loading and the BrokerConfig built from it.
"""

import pytest

from esp32_telemetry.server.config_loader import PASSWORD_ENV_VAR, load_config
from esp32_telemetry.server.errors import BrokerConnectionError
from esp32_telemetry.server.models import BrokerConfig

CONFIG_YAML = """
mqtt:
  broker: "tcp://mosquitto:1883"
  topic: "esp32/capteurs"
  client_id: "bridge-1"
  username: "esp32"
  password: "from-file"
  qos: 0
"""


@pytest.fixture(autouse=True)
def no_password_env(monkeypatch):
    monkeypatch.delenv(PASSWORD_ENV_VAR, raising=False)


def test_load_config_reads_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG_YAML)

    config = load_config(path)

    assert config["mqtt"]["client_id"] == "bridge-1"
    assert config["mqtt"]["password"] == "from-file"


def test_missing_config_file_yields_empty_config(tmp_path):
    assert load_config(tmp_path / "missing.yaml") == {}


def test_broken_yaml_is_raised(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("mqtt: [unclosed")

    with pytest.raises(Exception):
        load_config(path)


def test_password_from_environment_wins(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG_YAML)
    monkeypatch.setenv(PASSWORD_ENV_VAR, "from-env")

    config = load_config(path)

    assert config["mqtt"]["password"] == "from-env"


def test_broker_config_from_dict(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG_YAML)

    broker_config = BrokerConfig.from_dict(load_config(path))

    assert broker_config.host == "mosquitto"
    assert broker_config.port == 1883
    assert broker_config.use_tls is False
    assert broker_config.qos == 0
    # Defaults for what the file leaves out
    assert broker_config.keepalive == 60


def test_broker_config_hides_password():
    broker_config = BrokerConfig(password="s3cret")
    assert "s3cret" not in repr(broker_config)


def test_broker_config_defaults_on_empty_config():
    broker_config = BrokerConfig.from_dict({})

    assert broker_config.broker_url == "tcp://localhost:1883"
    assert broker_config.port == 1883
    assert broker_config.username is None


@pytest.mark.parametrize("url", ["http://broker", "tcp://", "tcp://broker:notaport"])
def test_broker_config_rejects_bad_urls(url):
    broker_config = BrokerConfig(broker_url=url)

    with pytest.raises(BrokerConnectionError):
        (broker_config.host, broker_config.port)
