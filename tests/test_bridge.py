"""Tests for bridge.py CLI, sink selection and fatal error handling"""

import pytest

from bridge import get_sink, get_source, main, run
from sinks.dispatch import POWER_TOPIC
from sinks.lametric import LaMetricSink
from sources.base import PowerReading
from sources.emu_serial import DEFAULT_DEVICE
from sources.errors import StreamError, UnknownFrameType


class FakeSource:
    """Async source yielding fixed events, then failing like a dead port"""

    def __init__(self, events):
        self.events = events

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass

    async def stream(self):
        for event in self.events:
            yield event
        raise StreamError("end of stream")


class TestGetSink:
    """Test the get_sink() factory function"""

    def test_get_sink_mqtt_from_env(self, mocker, monkeypatch):
        monkeypatch.setenv("MQTT_HOST", "broker.local")
        monkeypatch.setenv("MQTT_PORT", "1884")
        monkeypatch.setenv("MQTT_USERNAME", "emu")
        monkeypatch.setenv("MQTT_PASSWORD", "secret")
        mock_sink_class = mocker.patch('bridge.MQTTSink')

        sink = get_sink("mqtt")

        mock_sink_class.assert_called_once_with(
            host="broker.local", port=1884, username="emu", password="secret"
        )
        sink.connect.assert_called_once()
        sink.publish_discovery.assert_called_once()

    def test_get_sink_mqtt_defaults(self, mocker, monkeypatch):
        for name in ("MQTT_HOST", "MQTT_PORT", "MQTT_USERNAME", "MQTT_PASSWORD"):
            monkeypatch.delenv(name, raising=False)
        mock_sink_class = mocker.patch('bridge.MQTTSink')

        get_sink("mqtt")

        mock_sink_class.assert_called_once_with(host="127.0.0.1", port=1883, username=None, password=None)

    def test_get_sink_mqtt_without_discovery(self, mocker):
        mocker.patch('bridge.MQTTSink')

        sink = get_sink("mqtt", discovery=False)

        sink.publish_discovery.assert_not_called()

    def test_get_sink_mqtt_bad_port_exits(self, mocker, monkeypatch):
        monkeypatch.setenv("MQTT_PORT", "eighteen")
        mocker.patch('bridge.MQTTSink')

        with pytest.raises(SystemExit) as exc_info:
            get_sink("mqtt")

        assert exc_info.value.code == 1

    def test_get_sink_lametric_success(self, monkeypatch):
        monkeypatch.setenv("LAMETRIC_URL", "http://192.168.1.50:8080/api/v1/dev/widget/update/x/1")
        monkeypatch.setenv("LAMETRIC_API_KEY", "key123")

        sink = get_sink("lametric")

        assert isinstance(sink, LaMetricSink)
        assert sink.api_key == "key123"
        sink.close()

    def test_get_sink_lametric_missing_key_exits(self, monkeypatch):
        monkeypatch.setenv("LAMETRIC_URL", "http://192.168.1.50:8080/")
        monkeypatch.delenv("LAMETRIC_API_KEY", raising=False)

        with pytest.raises(SystemExit) as exc_info:
            get_sink("lametric")

        assert exc_info.value.code == 1

    def test_get_sink_unknown_sink_exits(self):
        with pytest.raises(SystemExit) as exc_info:
            get_sink("invalid_sink")

        assert exc_info.value.code == 1


class TestGetSource:

    def test_get_source_defaults(self, monkeypatch):
        monkeypatch.delenv("SERIAL_PORT", raising=False)
        monkeypatch.delenv("SERIAL_BAUD", raising=False)

        source = get_source()

        assert source.device == DEFAULT_DEVICE
        assert source.baudrate == 115200

    def test_get_source_from_env(self, monkeypatch):
        monkeypatch.setenv("SERIAL_PORT", "/dev/ttyACM1")
        monkeypatch.setenv("SERIAL_BAUD", "57600")

        source = get_source()

        assert source.device == "/dev/ttyACM1"
        assert source.baudrate == 57600

    def test_get_source_arguments_win(self, monkeypatch):
        monkeypatch.setenv("SERIAL_PORT", "/dev/ttyACM1")

        source = get_source(device="/dev/ttyUSB3", baudrate=9600)

        assert source.device == "/dev/ttyUSB3"
        assert source.baudrate == 9600


@pytest.mark.asyncio
async def test_main_dispatches_until_stream_fails(mocker):
    sink = mocker.Mock()
    mocker.patch('bridge.get_sink', return_value=sink)
    mocker.patch('bridge.get_source', return_value=FakeSource([PowerReading(power_watts=1185)]))

    with pytest.raises(StreamError):
        await main("mqtt")

    sink.publish.assert_called_once_with(POWER_TOPIC, "1185")
    sink.close.assert_called_once()


def test_run_fatal_error_exit_code(mocker):
    mocker.patch('bridge.main', new=mocker.AsyncMock(side_effect=UnknownFrameType(b"<PriceCluster>")))

    assert run(["--sink", "mqtt"]) == 1


def test_run_passes_arguments(mocker):
    mock_main = mocker.patch('bridge.main', new=mocker.AsyncMock(return_value=None))

    assert run(["--sink", "lametric", "--device", "/dev/ttyACM0", "--baudrate", "9600", "--no-discovery"]) == 0

    mock_main.assert_awaited_once_with("lametric", "/dev/ttyACM0", 9600, discovery=False)
