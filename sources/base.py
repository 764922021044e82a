"""Base definitions for the EMU-2 pipeline - data contracts and protocols"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, AsyncIterator, Union


class RecordKind(Enum):
    """Record types the EMU-2 emits, keyed by their XML element name."""
    INSTANTANEOUS_DEMAND = "InstantaneousDemand"
    CURRENT_SUMMATION = "CurrentSummationDelivered"
    TIME_CLUSTER = "TimeCluster"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class RawFrame:
    """
    One complete record carved out of the serial stream.

    Attributes:
        data: Frame bytes, up to and including the closing marker.
        terminator: Kind of the closing marker that ended the frame.
    """
    data: bytes
    terminator: RecordKind


def _tag(name: str, required: bool = False):
    return field(default="", metadata={"tag": name, "required": required})


@dataclass
class InstantaneousDemand:
    """Current power demand as reported by the meter (raw hex fields)."""
    device_mac_id: str = _tag("DeviceMacId")
    meter_mac_id: str = _tag("MeterMacId")
    timestamp: str = _tag("TimeStamp")
    demand: str = _tag("Demand", required=True)
    multiplier: str = _tag("Multiplier", required=True)
    divisor: str = _tag("Divisor", required=True)
    digits_right: str = _tag("DigitsRight")
    digits_left: str = _tag("DigitsLeft")
    suppress_leading_zero: str = _tag("SuppressLeadingZero")


@dataclass
class CurrentSummationDelivered:
    """Cumulative energy counters as reported by the meter (raw hex fields)."""
    device_mac_id: str = _tag("DeviceMacId")
    meter_mac_id: str = _tag("MeterMacId")
    timestamp: str = _tag("TimeStamp")
    summation_delivered: str = _tag("SummationDelivered", required=True)
    summation_received: str = _tag("SummationReceived", required=True)
    multiplier: str = _tag("Multiplier", required=True)
    divisor: str = _tag("Divisor", required=True)
    digits_right: str = _tag("DigitsRight")
    digits_left: str = _tag("DigitsLeft")
    suppress_leading_zero: str = _tag("SuppressLeadingZero")


MeterRecord = Union[InstantaneousDemand, CurrentSummationDelivered]


@dataclass
class PowerReading:
    """
    Converted instantaneous demand.

    Attributes:
        power_watts: Power in Watts. Positive = consuming, negative = producing.
        timestamp: ISO8601 timestamp string, None if the meter sent none.
    """
    power_watts: int
    timestamp: str | None = None


@dataclass
class EnergyReading:
    """
    Converted summation counters, already formatted for publishing.

    Attributes:
        delivered_kwh: Energy taken from the grid, kWh with 3 decimals.
        received_kwh: Energy fed back to the grid, kWh with 3 decimals.
        timestamp: ISO8601 timestamp string, None if the meter sent none.
    """
    delivered_kwh: str
    received_kwh: str
    timestamp: str | None = None


MeasurementEvent = Union[PowerReading, EnergyReading]


class MeasurementSource(Protocol):
    """
    Protocol for ingress sources (EMU-2 serial, or a replayed capture in tests).

    Uses Protocol for duck typing - implementations don't need to inherit,
    just implement the methods with matching signatures.
    """

    async def connect(self) -> None:
        """
        Open the underlying device.

        Should raise or exit if the device cannot be opened.
        """
        ...

    async def stream(self) -> AsyncIterator[MeasurementEvent]:
        """
        Stream measurement events as complete records arrive.

        Should be an async generator that yields PowerReading and
        EnergyReading objects, strictly in stream order.
        Raises EmuError subclasses on fatal conditions.
        """
        ...
