"""
Catalog of scales that can be added to a collection, with their key signatures.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from scalelog.exercise import InvalidPayload, parse_int

EASY = 'Easy'
INTERMEDIATE = 'Intermediate'
ADVANCED = 'Advanced'
EXPERT = 'Expert'

MAJOR_SCALES = [
    {'name': 'C Major', 'level': EASY, 'sharps': 0, 'flats': 0},
    {'name': 'G Major', 'level': EASY, 'sharps': 1, 'flats': 0},
    {'name': 'F Major', 'level': EASY, 'sharps': 0, 'flats': 1},
    {'name': 'D Major', 'level': INTERMEDIATE, 'sharps': 2, 'flats': 0},
    {'name': 'Bb Major', 'level': INTERMEDIATE, 'sharps': 0, 'flats': 2},
    {'name': 'A Major', 'level': INTERMEDIATE, 'sharps': 3, 'flats': 0},
    {'name': 'Eb Major', 'level': INTERMEDIATE, 'sharps': 0, 'flats': 3},
    {'name': 'E Major', 'level': ADVANCED, 'sharps': 4, 'flats': 0},
    {'name': 'Ab Major', 'level': ADVANCED, 'sharps': 0, 'flats': 4},
    {'name': 'B Major', 'level': ADVANCED, 'sharps': 5, 'flats': 0},
    {'name': 'Db Major', 'level': ADVANCED, 'sharps': 0, 'flats': 5},
    {'name': 'F# Major', 'level': EXPERT, 'sharps': 6, 'flats': 0},
    {'name': 'Gb Major', 'level': EXPERT, 'sharps': 0, 'flats': 6},
]

MINOR_SCALES = [
    {'name': 'A Minor', 'level': EASY, 'sharps': 0, 'flats': 0},
    {'name': 'E Minor', 'level': INTERMEDIATE, 'sharps': 1, 'flats': 0},
    {'name': 'D Minor', 'level': INTERMEDIATE, 'sharps': 0, 'flats': 1},
    {'name': 'B Minor', 'level': INTERMEDIATE, 'sharps': 2, 'flats': 0},
    {'name': 'G Minor', 'level': INTERMEDIATE, 'sharps': 0, 'flats': 2},
    {'name': 'F# Minor', 'level': ADVANCED, 'sharps': 3, 'flats': 0},
    {'name': 'C Minor', 'level': ADVANCED, 'sharps': 0, 'flats': 3},
    {'name': 'C# Minor', 'level': ADVANCED, 'sharps': 4, 'flats': 0},
    {'name': 'F Minor', 'level': ADVANCED, 'sharps': 0, 'flats': 4},
    {'name': 'G# Minor', 'level': EXPERT, 'sharps': 5, 'flats': 0},
    {'name': 'Bb Minor', 'level': EXPERT, 'sharps': 0, 'flats': 5},
]

# Seeded into every new collection, in this order
DEFAULT_SCALE_NAMES = ['C Major', 'G Major', 'D Major', 'A Minor', 'E Minor', 'F Major']

_BY_NAME = {scale['name']: scale for scale in MAJOR_SCALES + MINOR_SCALES}


def find_scale(name: str) -> Optional[Dict[str, Any]]:
    scale = _BY_NAME.get(name)
    return dict(scale) if scale else None


def default_scales() -> List[Dict[str, Any]]:
    return [dict(_BY_NAME[name]) for name in DEFAULT_SCALE_NAMES]


def normalize_scale(data: Any) -> Dict[str, Any]:
    """
    Validate a collection entry payload.

    Missing level or accidentals are filled in from the catalog when the
    name is known; otherwise level is required and accidentals default to 0.

    Raises:
        InvalidPayload: If the name is missing, level cannot be determined,
                        or both sharps and flats are nonzero
    """
    if not isinstance(data, dict):
        raise InvalidPayload("scale data must be an object")

    name = data.get('name')
    if not isinstance(name, str) or not name.strip():
        raise InvalidPayload("scale name is required")

    known = _BY_NAME.get(name, {})
    level = data.get('level') or known.get('level')
    if not level:
        raise InvalidPayload(f"level is required for {name}")

    sharps = data.get('sharps')
    flats = data.get('flats')
    sharps = parse_int(sharps if sharps is not None else known.get('sharps', 0), 'sharps', minimum=0)
    flats = parse_int(flats if flats is not None else known.get('flats', 0), 'flats', minimum=0)
    if sharps and flats:
        raise InvalidPayload(f"{name} cannot have both sharps and flats")

    return {'name': name, 'level': level, 'sharps': sharps, 'flats': flats}
