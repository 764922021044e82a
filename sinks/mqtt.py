"""MQTT egress module - publishes meter readings to a broker for Home Assistant"""
import json
import logging
import sys
import threading

import paho.mqtt.client as mqtt
from paho.mqtt.enums import CallbackAPIVersion

from sinks.dispatch import ENERGY_DELIVERED_TOPIC, ENERGY_RECEIVED_TOPIC, POWER_TOPIC

logger = logging.getLogger(__name__)

CLIENT_ID = "emu2mqtt"

# Seconds to wait for the broker to accept or refuse the login
CONNECT_TIMEOUT = 10.0

# Home Assistant MQTT discovery entities, one per state topic
DISCOVERY_ENTITIES = [
    {
        "name": "Meter Power Demand",
        "unique_id": "meter_power_demand",
        "device_class": "power",
        "state_topic": POWER_TOPIC,
        "state_class": "measurement",
        "unit_of_measurement": "W",
    },
    {
        "name": "Meter Total Energy Delivered",
        "unique_id": "meter_total_energy_delivered",
        "device_class": "energy",
        "state_topic": ENERGY_DELIVERED_TOPIC,
        "state_class": "total_increasing",
        "unit_of_measurement": "kWh",
    },
    {
        "name": "Meter Total Energy Received",
        "unique_id": "meter_total_energy_received",
        "device_class": "energy",
        "state_topic": ENERGY_RECEIVED_TOPIC,
        "state_class": "total_increasing",
        "unit_of_measurement": "kWh",
    },
]


def discovery_topic(unique_id: str) -> str:
    return f"homeassistant/sensor/{unique_id}/config"


class MQTTSink:
    """
    MQTT broker sink.

    Publishes readings with QoS 0 and does not wait for acknowledgement;
    paho's network loop runs in its own thread.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 1883,
        username: str | None = None,
        password: str | None = None,
        client_id: str = CLIENT_ID,
        connect_timeout: float = CONNECT_TIMEOUT
    ):
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self.client = mqtt.Client(callback_api_version=CallbackAPIVersion.VERSION2, client_id=client_id)
        if username:
            self.client.username_pw_set(username, password)
        self.client.on_connect = self._on_connect

        self._connack = threading.Event()
        self._connect_reason = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        # Runs on paho's network thread
        self._connect_reason = reason_code
        if reason_code.is_failure:
            logger.error(f"MQTT: Connection refused by broker: {reason_code}")
        else:
            logger.info(f"MQTT: Connected to {self.host}:{self.port}")
        self._connack.set()

    def connect(self) -> None:
        """
        Connect to the broker and start the network loop.

        Hard fail if the broker is unreachable, refuses the login, or does
        not answer within connect_timeout.
        """
        try:
            logger.info(f"MQTT: Connecting to {self.host}:{self.port}")
            self.client.connect(self.host, self.port)
        except OSError as e:
            logger.error(f"MQTT: Cannot connect to {self.host}:{self.port}: {e}")
            sys.exit(1)
            return  # For test mocking

        self.client.loop_start()

        if not self._connack.wait(self.connect_timeout):
            logger.error(f"MQTT: No answer from {self.host}:{self.port} within {self.connect_timeout}s")
            self.client.loop_stop()
            sys.exit(1)
            return

        if self._connect_reason.is_failure:
            logger.error("Check MQTT_USERNAME and MQTT_PASSWORD in emu-mqtt-bridge.env")
            self.client.loop_stop()
            sys.exit(1)
            return

    def publish(self, topic: str, payload: str) -> None:
        self.client.publish(topic, payload, qos=0, retain=False)

    def publish_discovery(self) -> None:
        """Announce the three meter sensors to Home Assistant (retained)."""
        for entity in DISCOVERY_ENTITIES:
            self.client.publish(
                discovery_topic(entity["unique_id"]),
                json.dumps(entity),
                qos=0,
                retain=True
            )
        logger.info(f"MQTT: Published discovery for {len(DISCOVERY_ENTITIES)} sensors")

    def close(self) -> None:
        self.client.loop_stop()
        self.client.disconnect()
        logger.info("MQTT: Disconnected")
