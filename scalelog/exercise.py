"""
Exercise keys, session normalization and query helpers shared by every store.

An exercise is one practice configuration: a scale, a practice type
(e.g. "Right Hand", "Contrary Motion") and an octave count. Stores keep at
most one session per exercise on the unique write path, so the key is the
lookup for best tempo, practiced badges and replacement.
"""
from __future__ import annotations

from collections import Counter
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Set

SESSION_FIELDS = ('scale', 'practice_type', 'octaves', 'bpm', 'duration')


class InvalidPayload(ValueError):
    """Raised when a request payload cannot be turned into a record."""


class ExerciseKey(NamedTuple):
    """Identifies a practice configuration: scale x practice type x octaves."""

    scale: str
    practice_type: str
    octaves: int

    @classmethod
    def from_session(cls, session: Dict[str, Any]) -> 'ExerciseKey':
        return cls(session['scale'], session['practice_type'], int(session['octaves']))

    def matches(self, session: Dict[str, Any]) -> bool:
        """True if the session was recorded for exactly this exercise."""
        return (session.get('scale') == self.scale
                and session.get('practice_type') == self.practice_type
                and int(session.get('octaves', 0)) == self.octaves)

    def to_params(self) -> Dict[str, Any]:
        return {'scale': self.scale, 'practice_type': self.practice_type, 'octaves': self.octaves}


def now_timestamp() -> str:
    """Current instant as UTC ISO-8601 with millisecond precision."""
    return format_timestamp(datetime.now(timezone.utc))


def format_timestamp(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.astimezone()
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_timestamp(value: str) -> datetime:
    # fromisoformat only accepts the Z suffix from Python 3.11 on
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.astimezone()
    return moment


def derive_date(timestamp: str) -> str:
    """Local calendar day of a timestamp, as YYYY-MM-DD."""
    return parse_timestamp(timestamp).astimezone().date().isoformat()


def today() -> str:
    return date.today().isoformat()


def parse_int(value: Any, field: str, minimum: Optional[int] = None) -> int:
    """
    Parse an integer field, accepting numeric strings.

    Args:
        value: Raw value from a payload or query string
        field: Field name used in the error message
        minimum: Smallest accepted value, if any

    Returns:
        The parsed integer

    Raises:
        InvalidPayload: If the value is missing, not an integer or too small
    """
    if value is None or isinstance(value, bool):
        raise InvalidPayload(f"{field} is required")
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidPayload(f"{field} must be an integer")
        value = int(value)
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise InvalidPayload(f"{field} must be an integer") from None
    if minimum is not None and parsed < minimum:
        raise InvalidPayload(f"{field} must be >= {minimum}")
    return parsed


def normalize_session(data: Any) -> Dict[str, Any]:
    """
    Validate a session payload and fill in timestamp and date.

    Args:
        data: Mapping with scale, practice_type, octaves, bpm, duration and
              optionally timestamp and date

    Returns:
        A new dict holding only session fields

    Raises:
        InvalidPayload: If a required field is missing or malformed
    """
    if not isinstance(data, dict):
        raise InvalidPayload("session data must be an object")

    scale = data.get('scale')
    practice_type = data.get('practice_type')
    if not isinstance(scale, str) or not scale.strip():
        raise InvalidPayload("scale is required")
    if not isinstance(practice_type, str) or not practice_type.strip():
        raise InvalidPayload("practice_type is required")

    timestamp = data.get('timestamp') or now_timestamp()
    session_date = data.get('date')
    if not isinstance(timestamp, str):
        raise InvalidPayload(f"timestamp must be an ISO-8601 string: {timestamp!r}")
    if session_date is not None and not isinstance(session_date, str):
        raise InvalidPayload(f"date must be a YYYY-MM-DD string: {session_date!r}")
    try:
        moment = parse_timestamp(timestamp)
    except ValueError:
        raise InvalidPayload(f"timestamp is not ISO-8601: {timestamp!r}") from None
    # Stored as UTC with a Z suffix so string order is time order
    timestamp = format_timestamp(moment)
    session_date = session_date or moment.astimezone().date().isoformat()

    return {
        'scale': scale,
        'practice_type': practice_type,
        'octaves': parse_int(data.get('octaves'), 'octaves', minimum=1),
        'bpm': parse_int(data.get('bpm'), 'bpm', minimum=1),
        'duration': parse_int(data.get('duration'), 'duration', minimum=0),
        'timestamp': timestamp,
        'date': session_date,
    }


def upgrade_legacy_session(data: Dict[str, Any], default_duration: int) -> Dict[str, Any]:
    """
    Map an older session shape onto the current fields.

    Older clients stored the practice type as practiceType, hand or pattern
    and sometimes left out the duration.
    """
    if not isinstance(data, dict):
        raise InvalidPayload("session data must be an object")
    upgraded = dict(data)
    upgraded['practice_type'] = (data.get('practice_type') or data.get('practiceType')
                                 or data.get('hand') or data.get('pattern'))
    if data.get('duration') is None:
        upgraded['duration'] = default_duration
    return upgraded


def newest_first(sessions: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Order sessions by timestamp descending, newest insert first on ties."""
    return sorted(sessions, key=lambda s: (s['timestamp'], s.get('id', 0)), reverse=True)


def best_bpm(sessions: Iterable[Dict[str, Any]], key: ExerciseKey) -> Optional[int]:
    tempos = [s['bpm'] for s in sessions if key.matches(s)]
    return max(tempos) if tempos else None


def practiced_types(sessions: Iterable[Dict[str, Any]], scale: str) -> Set[str]:
    return {s['practice_type'] for s in sessions if s['scale'] == scale}


def favorite_scale(sessions: Iterable[Dict[str, Any]]) -> Optional[str]:
    """Scale with the most sessions; ties go to the scale seen first."""
    counts = Counter(s['scale'] for s in sessions)
    if not counts:
        return None
    # Counter preserves first-seen order and most_common is stable
    return counts.most_common(1)[0][0]


def empty_stats() -> Dict[str, Any]:
    return {
        'total_sessions': 0,
        'today_sessions': 0,
        'total_practice_time_seconds': 0,
        'favorite_scale': None,
    }


def practice_stats(sessions: List[Dict[str, Any]], on_date: Optional[str] = None) -> Dict[str, Any]:
    """Totals over a list of sessions, in the same shape the store returns."""
    on_date = on_date or today()
    ordered = sorted(sessions, key=lambda s: s.get('id', 0))
    return {
        'total_sessions': len(ordered),
        'today_sessions': sum(1 for s in ordered if s['date'] == on_date),
        'total_practice_time_seconds': sum(s.get('duration') or 0 for s in ordered),
        'favorite_scale': favorite_scale(ordered),
    }
