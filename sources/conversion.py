"""Unit conversion for EMU-2 records - fixed-point hex fields to W and kWh"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_HALF_UP, localcontext
from fractions import Fraction

from sources.base import (
    CurrentSummationDelivered,
    EnergyReading,
    InstantaneousDemand,
    MeasurementEvent,
    MeterRecord,
    PowerReading,
)
from sources.errors import ConversionError

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1

# Meter timestamps count seconds from 2000-01-01 UTC
METER_EPOCH = datetime(2000, 1, 1, tzinfo=timezone.utc)

KWH_QUANTUM = Decimal("0.001")


def parse_hex(value: str, name: str) -> int:
    """
    Parse a validated hex field ("0x1A" or "1A") as a signed 64-bit integer.

    Raises:
        ConversionError: the text does not parse or overflows int64.
    """
    try:
        number = int(value, 16)
    except ValueError as e:
        raise ConversionError(f"{name}: cannot parse {value!r} as hex") from e

    if not INT64_MIN <= number <= INT64_MAX:
        raise ConversionError(f"{name}: {value!r} does not fit in 64 bits")
    return number


def to_int32(value: int) -> int:
    """
    Truncate to the low 32 bits and sign-extend.

    The meter sends negative (reverse flow) values as 32-bit two's complement
    inside a wider hex field, e.g. 0xFFFFFFFF is -1.
    """
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value & 0x80000000 else value


def _scale(raw: str, multiplier: str, divisor: str, name: str) -> Fraction:
    """Exact value of int32(raw) * multiplier / divisor."""
    mult = parse_hex(multiplier, "Multiplier")
    div = parse_hex(divisor, "Divisor")
    if div == 0:
        raise ConversionError(f"{name}: divisor is zero")
    return Fraction(to_int32(parse_hex(raw, name)) * mult, div)


# int32 * int64 needs ~29 digits before the point; leave room for the fraction
DECIMAL_PRECISION = 60


def _to_decimal(value: Fraction) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        return Decimal(value.numerator) / Decimal(value.denominator)


def format_kwh(value: Fraction) -> str:
    """Format kWh with exactly three decimals."""
    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        rounded = _to_decimal(value).quantize(KWH_QUANTUM, rounding=ROUND_HALF_EVEN)
    return format(rounded, "f")


def meter_timestamp(value: str) -> str | None:
    """ISO8601 string for a meter timestamp, None if it is absent or garbled."""
    try:
        seconds = int(value, 16)
        return (METER_EPOCH + timedelta(seconds=seconds)).isoformat()
    except (ValueError, OverflowError):
        return None


def convert_power(record: InstantaneousDemand) -> PowerReading:
    """Instantaneous demand in whole Watts (the meter reports kW)."""
    kw = _scale(record.demand, record.multiplier, record.divisor, "Demand")
    watts = _to_decimal(kw * 1000).to_integral_value(rounding=ROUND_HALF_UP)
    return PowerReading(power_watts=int(watts), timestamp=meter_timestamp(record.timestamp))


def convert_energy(record: CurrentSummationDelivered) -> EnergyReading:
    """Delivered and received energy counters in kWh."""
    delivered = _scale(
        record.summation_delivered, record.multiplier, record.divisor, "SummationDelivered"
    )
    received = _scale(
        record.summation_received, record.multiplier, record.divisor, "SummationReceived"
    )
    return EnergyReading(
        delivered_kwh=format_kwh(delivered),
        received_kwh=format_kwh(received),
        timestamp=meter_timestamp(record.timestamp),
    )


def convert(record: MeterRecord) -> MeasurementEvent:
    """Convert any decoded record into its measurement event."""
    if isinstance(record, InstantaneousDemand):
        return convert_power(record)
    if isinstance(record, CurrentSummationDelivered):
        return convert_energy(record)
    raise ConversionError(f"No conversion for {type(record).__name__}")
