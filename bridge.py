import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

# Load configuration from single .env file
load_dotenv("emu-mqtt-bridge.env")

from sources.base import MeasurementSource
from sources.emu_serial import EmuSerialSource, DEFAULT_DEVICE
from sources.errors import EmuError
from sinks.dispatch import dispatch
from sinks.lametric import LaMetricSink
from sinks.mqtt import MQTTSink

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(levelname)s - %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.error(f"{name} must be a number, got {value!r}")
        sys.exit(1)


def get_sink(sink_name: str, discovery: bool = True):
    """Initialize and connect the selected sink with hard fail on misconfiguration"""
    if sink_name == "mqtt":
        sink = MQTTSink(
            host=os.getenv("MQTT_HOST") or "127.0.0.1",
            port=_env_int("MQTT_PORT", 1883),
            username=os.getenv("MQTT_USERNAME"),
            password=os.getenv("MQTT_PASSWORD"),
        )
        logger.info(f"Using sink: MQTT")
        sink.connect()
        if discovery:
            sink.publish_discovery()
        return sink
    elif sink_name == "lametric":
        url = os.getenv("LAMETRIC_URL")
        api_key = os.getenv("LAMETRIC_API_KEY")
        if not url or not api_key:
            logger.error("LaMetric: LAMETRIC_URL and LAMETRIC_API_KEY must be configured in emu-mqtt-bridge.env")
            sys.exit(1)
        logger.info(f"Using sink: LaMetric")
        return LaMetricSink(url=url, api_key=api_key)
    else:
        logger.error(f"Unknown sink: {sink_name}")
        sys.exit(1)


def get_source(device: str | None = None, baudrate: int | None = None) -> MeasurementSource:
    """Build the EMU-2 source; command line values win over the env file"""
    return EmuSerialSource(
        device=device or os.getenv("SERIAL_PORT") or DEFAULT_DEVICE,
        baudrate=baudrate or _env_int("SERIAL_BAUD", 115200),
    )


async def main(sink_name: str, device: str | None = None, baudrate: int | None = None, discovery: bool = True):
    sink = get_sink(sink_name, discovery=discovery)

    try:
        # One record at a time: read, decode, convert, publish
        async with get_source(device, baudrate) as source:
            async for event in source.stream():
                dispatch(event, sink)
    finally:
        sink.close()


def run(argv=None) -> int:
    # Parse command line arguments
    parser = argparse.ArgumentParser(description="EMU-2 MQTT Bridge")
    parser.add_argument(
        "--sink",
        type=str,
        default="mqtt",
        choices=["mqtt", "lametric"],
        help="Where to publish readings (default: mqtt)"
    )
    parser.add_argument(
        "--device",
        type=str,
        default=None,
        help="Serial device of the EMU-2 (default: SERIAL_PORT or the EMU-2 by-id path)"
    )
    parser.add_argument(
        "--baudrate",
        type=int,
        default=None,
        help="Serial baudrate (default: SERIAL_BAUD or 115200)"
    )
    parser.add_argument(
        "--no-discovery",
        action="store_true",
        help="Do not publish Home Assistant discovery config"
    )
    args = parser.parse_args(argv)

    try:
        asyncio.run(main(args.sink, args.device, args.baudrate, discovery=not args.no_discovery))
    except EmuError as e:
        # Fatal: let the supervisor restart us
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Script stopped by user.")
    return 0


if __name__ == "__main__":
    sys.exit(run())
