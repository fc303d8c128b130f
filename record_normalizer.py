"""
Normalizes raw JustCall call records into a fixed transcript schema.

Record shapes differ between integrations (standard calls, JustCall IQ, ...),
so each output field is resolved from an ordered list of accessors.
"""
import json
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

NO_TRANSCRIPT = "[No Transcript Found]"
UNKNOWN = "Unknown"
UNKNOWN_DATE = "Unknown Date"

CSV_HEADERS = ['Call ID', 'Date Time', 'From', 'To', 'Direction', 'Duration', 'Transcript', 'Recording URL']


@dataclass(frozen=True)
class TranscriptRecord:
    id: str
    datetime: str
    from_number: str
    to_number: str
    duration: str
    direction: str
    transcript: str
    recording_url: str

    @property
    def has_transcript(self) -> bool:
        return self.transcript != NO_TRANSCRIPT

    def as_row(self) -> List[str]:
        """Values in CSV column order."""
        return [self.id, self.datetime, self.from_number, self.to_number,
                self.direction, self.duration, self.transcript, self.recording_url]

    def to_dict(self) -> Dict[str, str]:
        data = asdict(self)
        data['from'] = data.pop('from_number')
        data['to'] = data.pop('to_number')
        return data


Accessor = Callable[[Dict[str, Any]], Any]


def key(name: str) -> Accessor:
    return lambda record: record.get(name)


def nested(parent: str, child: str) -> Accessor:
    def get(record):
        inner = record.get(parent)
        return inner.get(child) if isinstance(inner, dict) else None
    return get


TRANSCRIPT_ACCESSORS: Tuple[Accessor, ...] = (
    key('iq_transcript'),
    key('call_transcription'),
    key('transcription'),
    nested('extra_details', 'transcript'),
    nested('justcall_iq', 'transcript'),
)

# output field -> (accessors in priority order, fallback literal)
FIELD_SOURCES: Dict[str, Tuple[Tuple[Accessor, ...], str]] = {
    'id': ((key('id'),), ''),
    'datetime': ((key('datetime'), key('date')), UNKNOWN_DATE),
    'from_number': ((key('from'),), UNKNOWN),
    'to_number': ((key('to'),), UNKNOWN),
    'duration': ((key('duration'),), '0'),
    'direction': ((key('direction'),), UNKNOWN),
    'recording_url': ((key('recording_url'),), ''),
}


def _is_empty(value: Any) -> bool:
    # 0 is a real value (call id, duration); blank strings and containers are not
    return value is None or (isinstance(value, (str, list, dict)) and not value)


def first_value(record: Dict[str, Any], accessors: Sequence[Accessor]) -> Optional[Any]:
    """Return the first non-empty value produced by ``accessors``."""
    for accessor in accessors:
        value = accessor(record)
        if not _is_empty(value):
            return value
    return None


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)


def normalize_record(raw: Any) -> TranscriptRecord:
    """Map one raw call record to a TranscriptRecord. Never raises."""
    record = raw if isinstance(raw, dict) else {}

    fields = {}
    for name, (accessors, fallback) in FIELD_SOURCES.items():
        value = first_value(record, accessors)
        fields[name] = fallback if value is None else _as_text(value)

    text = first_value(record, TRANSCRIPT_ACCESSORS)
    fields['transcript'] = NO_TRANSCRIPT if text is None else _as_text(text)
    return TranscriptRecord(**fields)


def extract_records(payload: Any) -> List[Any]:
    """Pull the list of call records out of a response body."""
    if isinstance(payload, dict):
        data = payload.get('data')
        return data if isinstance(data, list) else []
    if isinstance(payload, list):
        return payload
    return []
