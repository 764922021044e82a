"""Error taxonomy for the EMU-2 pipeline.

Running out of buffered bytes before a terminator shows up is not an error:
the scanner simply returns no frames and waits for the next read.

Every other condition is an ``EmuError``. The ``fatal`` flag tells the driver
whether processing may continue. Only ``ValidationError`` is recoverable. The
core never exits the process itself.
"""


class EmuError(Exception):
    """Base class for all pipeline errors."""
    fatal = True


class FrameTooLarge(EmuError):
    """The read buffer outgrew its ceiling without a terminator."""

    def __init__(self, size: int, limit: int):
        super().__init__(f"No record terminator in {size} buffered bytes (limit {limit})")
        self.size = size
        self.limit = limit


class ValidationError(EmuError):
    """A required field is missing or not hexadecimal. The record is dropped."""
    fatal = False

    def __init__(self, record_name: str, missing: list[str], invalid: list[str]):
        problems = []
        if missing:
            problems.append(f"missing {', '.join(missing)}")
        if invalid:
            problems.append(f"not hexadecimal: {', '.join(invalid)}")
        super().__init__(f"{record_name}: {'; '.join(problems)}")
        self.record_name = record_name
        self.missing = missing
        self.invalid = invalid


class ConversionError(EmuError):
    """Arithmetic failure, or a validated field that still would not parse."""


class UnknownFrameType(EmuError):
    """The frame does not start with a known record tag."""

    def __init__(self, head: bytes):
        super().__init__(f"Unexpected record type, frame starts with {head!r}")
        self.head = head


class StreamError(EmuError):
    """The serial stream failed or stopped delivering data."""
