"""Frame scanner for the EMU-2 serial stream.

The EMU-2 writes loosely formatted XML records, one after another, with no
length prefix::

    <InstantaneousDemand>\\r\\n
      <DeviceMacId>0xd8d5b9000000xxxx</DeviceMacId>\\r\\n
      ...
    </InstantaneousDemand>\\r\\n

A record is complete once its closing tag and line break have arrived. Reads
from the port return arbitrary chunks, so bytes are buffered until one of the
known closing markers shows up.
"""
import logging

from sources.base import RawFrame, RecordKind
from sources.errors import FrameTooLarge

logger = logging.getLogger(__name__)

TERMINATORS = {
    RecordKind.INSTANTANEOUS_DEMAND: b"</InstantaneousDemand>\r\n",
    RecordKind.CURRENT_SUMMATION: b"</CurrentSummationDelivered>\r\n",
    RecordKind.TIME_CLUSTER: b"</TimeCluster>\r\n",
}

# Largest amount of unterminated data we are willing to hold (64 KiB)
MAX_FRAME_SIZE = 64 * 1024

_LONGEST_TERMINATOR = max(len(marker) for marker in TERMINATORS.values())


class FrameScanner:
    """
    Incremental splitter turning arbitrary read chunks into RawFrames.

    Feed it whatever the port returned; it hands back every frame that is now
    complete and keeps the rest for the next call. Frames never overlap and
    always end with a full terminator.
    """

    def __init__(self, max_frame_size: int = MAX_FRAME_SIZE):
        self.max_frame_size = max_frame_size
        self._buffer = bytearray()
        # Offset from which the next search may start; everything before it
        # has already been searched and holds no complete terminator.
        self._scan_from = 0

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet part of an emitted frame."""
        return len(self._buffer)

    def feed(self, data: bytes) -> list[RawFrame]:
        """
        Append data to the buffer and return all frames completed by it.

        Frames completed before an oversized tail are still returned; the
        overflow is raised on this call only if nothing was completed,
        otherwise on the next one.

        Raises:
            FrameTooLarge: the remaining buffer exceeds max_frame_size.
        """
        if len(self._buffer) > self.max_frame_size:
            raise FrameTooLarge(len(self._buffer), self.max_frame_size)

        self._buffer.extend(data)
        frames = []

        while True:
            match = self._find_terminator()
            if match is None:
                break

            end, kind = match
            frames.append(RawFrame(data=bytes(self._buffer[:end]), terminator=kind))
            del self._buffer[:end]
            self._scan_from = 0

        # Terminators may be split across reads, so rescan the tail next time
        self._scan_from = max(0, len(self._buffer) - _LONGEST_TERMINATOR + 1)

        if len(self._buffer) > self.max_frame_size and not frames:
            raise FrameTooLarge(len(self._buffer), self.max_frame_size)

        return frames

    def _find_terminator(self) -> tuple[int, RecordKind] | None:
        """Return (end offset, kind) of the earliest terminator, or None."""
        best = None
        for kind, marker in TERMINATORS.items():
            i = self._buffer.find(marker, self._scan_from)
            if i < 0:
                continue
            if best is None or i < best[0]:
                best = (i, kind, marker)

        if best is None:
            return None

        i, kind, marker = best
        return i + len(marker), kind
