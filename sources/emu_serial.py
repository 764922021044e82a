"""EMU-2 serial ingress module - reads XML records via USB serial port"""
import asyncio
import logging
import sys
from typing import AsyncIterator

import serial

from sources.base import MeasurementEvent
from sources.errors import StreamError
from sources.framing import FrameScanner, MAX_FRAME_SIZE
from sources.pipeline import process_chunk

logger = logging.getLogger(__name__)

DEFAULT_DEVICE = "/dev/serial/by-id/usb-Rainforest_Automation__Inc._RFA-Z105-2_HW2.7.3_EMU-2-if00"


class EmuSerialSource:
    """
    Rainforest EMU-2 serial power source.

    The EMU-2 relays the smart meter's ZigBee readings over a USB CDC serial
    port as a stream of small XML records. This source frames, decodes and
    converts them into PowerReading and EnergyReading events.
    """

    def __init__(
        self,
        device: str = DEFAULT_DEVICE,
        baudrate: int = 115200,
        timeout: float = 10.0,
        max_retries: int = 5,
        max_frame_size: int = MAX_FRAME_SIZE
    ):
        """
        Initialize EMU-2 serial source.

        Args:
            device: Serial device path (default: the EMU-2's by-id path)
            baudrate: Serial baudrate (default: 115200)
            timeout: Read timeout in seconds (default: 10.0)
            max_retries: Consecutive empty reads before the stream is considered dead (default: 5)
            max_frame_size: Buffer ceiling without a record terminator (default: 64 KiB)
        """
        self.device = device
        self.baudrate = baudrate
        self.timeout = timeout
        self.max_retries = max_retries
        self.max_frame_size = max_frame_size
        self.ser = None

    async def __aenter__(self):
        """Context manager entry: connect to serial port"""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit: cleanup resources"""
        if self.ser and self.ser.is_open:
            self.ser.close()
            logger.info("EMU-2: Port closed")

    async def connect(self) -> None:
        """
        Serial Bootstrap.
        Opens the serial port; hard fail if it cannot be opened.
        """
        if not self.device:
            logger.error("SERIAL_PORT not configured")
            sys.exit(1)
            return  # For test mocking

        try:
            logger.info(f"EMU-2: Opening {self.device} at {self.baudrate} baud")
            self.ser = serial.Serial(
                port=self.device,
                baudrate=self.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self.timeout
            )
        except serial.SerialException as e:
            logger.error(f"EMU-2: Cannot open {self.device}: {e}")
            logger.error("Check that device exists and you have permissions (add user to 'dialout' group)")
            sys.exit(1)
            return

    async def stream(self) -> AsyncIterator[MeasurementEvent]:
        """
        Serial Reading Stream.

        Reads whatever the port has, splits it into records and yields one
        event per publishable record, in stream order. The next read is only
        issued after the consumer has handled every event from this one.

        Raises:
            StreamError: the port failed, or stayed silent for max_retries reads.
            EmuError: any other fatal pipeline condition.
        """
        if self.ser is None or not self.ser.is_open:
            raise StreamError("stream() called before connect()")

        scanner = FrameScanner(max_frame_size=self.max_frame_size)
        empty_reads = 0
        logger.info(f"EMU-2: Streaming records from {self.device}")

        while True:
            try:
                # Blocking read, run in a thread to not block the event loop
                chunk = await asyncio.to_thread(self._read_chunk)
            except serial.SerialException as e:
                raise StreamError(f"Read from {self.device} failed: {e}") from e

            if not chunk:
                empty_reads += 1
                if empty_reads >= self.max_retries:
                    raise StreamError(
                        f"No data from {self.device} in {empty_reads} reads of {self.timeout}s"
                    )
                logger.warning(f"EMU-2: No data received. Retrying... ({empty_reads}/{self.max_retries})")
                continue

            empty_reads = 0
            for event in process_chunk(scanner, chunk):
                yield event

    def _read_chunk(self) -> bytes:
        """Read everything buffered, or block for at least one byte."""
        return self.ser.read(self.ser.in_waiting or 1)
