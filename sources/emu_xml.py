"""Record decoder for EMU-2 frames - classifies, extracts and validates fields"""
import logging
import re
from dataclasses import fields

from sources.base import (
    CurrentSummationDelivered,
    InstantaneousDemand,
    MeterRecord,
    RawFrame,
    RecordKind,
)
from sources.errors import UnknownFrameType, ValidationError

logger = logging.getLogger(__name__)

# Record type is decided by the first letter of the opening tag
KIND_BY_INITIAL = {
    ord("I"): RecordKind.INSTANTANEOUS_DEMAND,
    ord("C"): RecordKind.CURRENT_SUMMATION,
    ord("T"): RecordKind.TIME_CLUSTER,
}

RECORD_TYPES = {
    RecordKind.INSTANTANEOUS_DEMAND: InstantaneousDemand,
    RecordKind.CURRENT_SUMMATION: CurrentSummationDelivered,
}

# Optional 0x prefix, at least one hex digit
HEX_PATTERN = re.compile(r'(0[xX])?[0-9a-fA-F]+')


def classify(data: bytes) -> RecordKind:
    """
    Determine the record kind from the frame's opening tag.

    Leading whitespace (the line break left over from the previous record)
    is skipped; the next byte must be '<' followed by the tag's initial.
    """
    head = data.lstrip()
    if len(head) < 2 or head[0] != ord("<"):
        return RecordKind.UNKNOWN
    return KIND_BY_INITIAL.get(head[1], RecordKind.UNKNOWN)


def decode_frame(frame: RawFrame) -> MeterRecord | None:
    """
    Decode a frame into a typed, validated record.

    Returns None for TimeCluster frames, which carry nothing we publish.

    Raises:
        UnknownFrameType: the opening tag is not one the EMU-2 protocol defines.
        ValidationError: a required field is missing or not hexadecimal.
    """
    kind = classify(frame.data)

    if kind is RecordKind.TIME_CLUSTER:
        return None
    if kind is RecordKind.UNKNOWN:
        raise UnknownFrameType(frame.data.lstrip()[:32])

    if kind is not frame.terminator:
        logger.debug(f"EMU-2: {kind.value} record closed by {frame.terminator.value} marker")

    record = _extract(RECORD_TYPES[kind], frame.data.decode("ascii", errors="replace"))
    validate(record)
    return record


def _extract(record_type, text: str) -> MeterRecord:
    """Pull every known tag out of the text; missing tags stay empty."""
    values = {}
    for f in fields(record_type):
        tag = f.metadata["tag"]
        match = re.search(rf'<{tag}>(.*?)</{tag}>', text, re.DOTALL)
        if match:
            values[f.name] = match.group(1).strip()
    return record_type(**values)


def validate(record: MeterRecord) -> None:
    """
    Check the record's required fields.

    Raises:
        ValidationError: listing every missing and every non-hex field.
    """
    missing = []
    invalid = []
    for f in fields(record):
        if not f.metadata["required"]:
            continue
        value = getattr(record, f.name)
        if not value:
            missing.append(f.metadata["tag"])
        elif not HEX_PATTERN.fullmatch(value):
            invalid.append(f.metadata["tag"])

    if missing or invalid:
        raise ValidationError(type(record).__name__, missing, invalid)
