import pytest
import requests
from sinks.dispatch import POWER_TOPIC, ENERGY_DELIVERED_TOPIC
from sinks.lametric import LaMetricSink, format_power_frame, _perform_http_request

URL = "http://192.168.1.50:8080/api/v1/dev/widget/update/com.lametric.abc/1"


def test_format_power_frame_import_power():
    expected_payload_import = {
        "frames": [
            {
                "text": "1500 W",
                "icon": 26337,
                "index": 0
            }
        ]
    }
    assert format_power_frame(1500) == expected_payload_import


def test_format_power_frame_export_power():
    expected_payload_export = {
        "frames": [
            {
                "text": "-500 W",
                "icon": 54077,
                "index": 0
            }
        ]
    }
    assert format_power_frame(-500) == expected_payload_export


def test_format_power_frame_kilowatts():
    # High power is shown in kW
    assert format_power_frame(10500)["frames"][0]["text"] == "10.5 kW"
    assert format_power_frame(9999)["frames"][0]["text"] == "9999 W"


def test_format_power_frame_export_high():
    frame = format_power_frame(-11000)["frames"][0]

    assert frame["text"] == "-11.0 kW"
    assert frame["icon"] == 54077


def test_lametric_sink_pushes_power(mocker):
    # Mock the HTTP request to avoid actual network calls
    mock_request = mocker.patch('sinks.lametric._perform_http_request')

    sink = LaMetricSink(url=URL, api_key="key123")
    sink.publish(POWER_TOPIC, "1185")
    sink.close()

    mock_request.assert_called_once_with(URL, "key123", format_power_frame(1185))


def test_lametric_sink_ignores_energy(mocker):
    mock_request = mocker.patch('sinks.lametric._perform_http_request')

    sink = LaMetricSink(url=URL, api_key="key123")
    sink.publish(ENERGY_DELIVERED_TOPIC, "9.999")
    sink.close()

    mock_request.assert_not_called()


def test_http_request_failure_is_logged(mocker, caplog):
    mocker.patch('sinks.lametric.requests.post', side_effect=requests.ConnectionError("unreachable"))

    _perform_http_request(URL, "key123", format_power_frame(100))

    assert "LaMetric: Failed HTTP POST" in caplog.text


def test_http_request_uses_basic_auth(mocker):
    mock_post = mocker.patch('sinks.lametric.requests.post')

    _perform_http_request(URL, "key123", {"frames": []})

    mock_post.assert_called_once_with(URL, json={"frames": []}, auth=("dev", "key123"), timeout=2)
    mock_post.return_value.raise_for_status.assert_called_once()
