"""Pure frame pipeline: bytes -> frames -> records -> measurement events"""
import logging
from typing import Iterable, Iterator

from sources.base import MeasurementEvent, RawFrame
from sources.conversion import convert
from sources.emu_xml import decode_frame
from sources.errors import ValidationError
from sources.framing import FrameScanner, MAX_FRAME_SIZE

logger = logging.getLogger(__name__)


def process_frame(frame: RawFrame) -> MeasurementEvent | None:
    """
    Decode and convert one frame.

    Returns None when the frame is a TimeCluster or fails validation; the
    latter is logged and the stream carries on. Fatal errors propagate.
    """
    try:
        record = decode_frame(frame)
    except ValidationError as e:
        logger.warning(f"EMU-2: Skipping incomplete record: {e}")
        return None

    if record is None:
        return None
    return convert(record)


def process_chunk(scanner: FrameScanner, chunk: bytes) -> Iterator[MeasurementEvent]:
    """Feed one read chunk to the scanner and yield the events it completes."""
    for frame in scanner.feed(chunk):
        event = process_frame(frame)
        if event is not None:
            yield event


def iter_measurements(
    chunks: Iterable[bytes],
    max_frame_size: int = MAX_FRAME_SIZE
) -> Iterator[MeasurementEvent]:
    """
    Run raw read chunks through the whole pipeline, in order.

    Each frame is fully processed before the next chunk is pulled.
    """
    scanner = FrameScanner(max_frame_size=max_frame_size)
    for chunk in chunks:
        yield from process_chunk(scanner, chunk)
