"""Dispatcher - routes measurement events to sink topics"""
import logging
from typing import Protocol

from sources.base import EnergyReading, MeasurementEvent, PowerReading

logger = logging.getLogger(__name__)

POWER_TOPIC = "homeassistant/sensor/meter_power_demand/state"
ENERGY_DELIVERED_TOPIC = "homeassistant/sensor/meter_total_energy_delivered/state"
ENERGY_RECEIVED_TOPIC = "homeassistant/sensor/meter_total_energy_received/state"


class Sink(Protocol):
    """
    Protocol for egress sinks (MQTT broker, LaMetric Time).

    publish() must not wait for delivery; sinks are fire-and-forget.
    """

    def publish(self, topic: str, payload: str) -> None:
        ...

    def close(self) -> None:
        ...


def dispatch(event: MeasurementEvent, sink: Sink) -> None:
    """
    Forward a measurement event to its topic(s).

    Args:
        event: PowerReading or EnergyReading
        sink: Where to publish
    """
    if isinstance(event, PowerReading):
        logger.info(f"[{event.timestamp}] Power: {event.power_watts} W")
        _forward(sink, POWER_TOPIC, str(event.power_watts))
    elif isinstance(event, EnergyReading):
        logger.info(
            f"[{event.timestamp}] Energy: delivered {event.delivered_kwh} kWh, "
            f"received {event.received_kwh} kWh"
        )
        _forward(sink, ENERGY_DELIVERED_TOPIC, event.delivered_kwh)
        _forward(sink, ENERGY_RECEIVED_TOPIC, event.received_kwh)
    else:
        raise TypeError(f"Cannot dispatch {type(event).__name__}")


def _forward(sink: Sink, topic: str, payload: str) -> None:
    # Never publish placeholders for missing values
    if not payload:
        logger.debug(f"Empty payload for {topic}, not publishing")
        return
    sink.publish(topic, payload)
