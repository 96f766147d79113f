"""Parsing helpers for bulk course imports.

Timetables usually arrive as spreadsheet exports, so this module turns
CSV or JSON payloads into normalized row dicts with keys: `name`, `code`,
`instructor`, `location`, `description`, `credits`, `color`,
`day_of_week`, `start_time`, `end_time` and `weeks`. The field-level
helpers accept the loose formats people type into those sheets.
"""

import csv
import io
import json
import re
from typing import Dict, List

_DAY_ALIASES = {
    'monday': 1, 'mon': 1, '周一': 1, '星期一': 1,
    'tuesday': 2, 'tue': 2, 'tues': 2, '周二': 2, '星期二': 2,
    'wednesday': 3, 'wed': 3, '周三': 3, '星期三': 3,
    'thursday': 4, 'thu': 4, 'thur': 4, 'thurs': 4, '周四': 4, '星期四': 4,
    'friday': 5, 'fri': 5, '周五': 5, '星期五': 5,
    'saturday': 6, 'sat': 6, '周六': 6, '星期六': 6,
    'sunday': 7, 'sun': 7, '周日': 7, '星期日': 7, '星期天': 7,
}

# camelCase headers come from the web client's export
_KEY_ALIASES = {
    'dayOfWeek': 'day_of_week',
    'day': 'day_of_week',
    'startTime': 'start_time',
    'start': 'start_time',
    'endTime': 'end_time',
    'end': 'end_time',
    'teacher': 'instructor',
    'room': 'location',
}


def parse_day_of_week(value) -> int:
    """Map 1-7, English day names or Chinese day names to 1 (Mon) .. 7 (Sun)."""
    if isinstance(value, bool):
        raise ValueError(f'invalid day of week: {value!r}')
    if isinstance(value, int):
        if 1 <= value <= 7:
            return value
        raise ValueError(f'day of week out of range: {value}')
    text = str(value or '').strip()
    if text.isdigit() and 1 <= int(text) <= 7:
        return int(text)
    day = _DAY_ALIASES.get(text.lower()) or _DAY_ALIASES.get(text)
    if day is None:
        raise ValueError(f'invalid day of week: {value!r}')
    return day


def parse_time(value) -> str:
    """Normalize `8:30`, `08:30`, `8：30` or `830` to `HH:MM`."""
    cleaned = re.sub(r'[^0-9:：]', '', str(value or '')).replace('：', ':')
    m = re.match(r'^(\d{1,2}):(\d{2})$', cleaned)
    if m:
        hours, minutes = int(m.group(1)), int(m.group(2))
    elif re.match(r'^\d{3,4}$', cleaned):
        hours, minutes = int(cleaned[:-2]), int(cleaned[-2:])
    else:
        raise ValueError(f'invalid time: {value!r}')
    if hours > 24 or minutes >= 60 or (hours == 24 and minutes):
        raise ValueError(f'time out of range: {value!r}')
    return f'{hours:02d}:{minutes:02d}'


def parse_weeks(value) -> List[int]:
    """Parse `"1-16"` or `"1,3,5-8"` into week numbers; empty means every week.

    Reversed ranges and week numbers below 1 raise.
    """
    if value is None or value == '':
        return []
    if isinstance(value, list):
        weeks = {int(w) for w in value}
    else:
        weeks = set()
        for part in str(value).replace('，', ',').split(','):
            part = part.strip()
            if not part:
                continue
            if '-' in part:
                lo, hi = (p.strip() for p in part.split('-', 1))
                if not (lo.isdigit() and hi.isdigit()):
                    raise ValueError(f'invalid week range: {part!r}')
                if int(lo) > int(hi):
                    raise ValueError(f'reversed week range: {part!r}')
                weeks.update(range(int(lo), int(hi) + 1))
            elif part.isdigit():
                weeks.add(int(part))
            else:
                raise ValueError(f'invalid week number: {part!r}')
        if not weeks:
            raise ValueError(f'no week numbers in {value!r}')
    if any(w < 1 for w in weeks):
        raise ValueError(f'week numbers start at 1: {value!r}')
    return sorted(weeks)


def parse_course_file(file_bytes: bytes, filename: str) -> List[Dict]:
    """Dispatch to the CSV or JSON parser based on file extension."""
    name = filename.lower()
    if name.endswith('.json'):
        return parse_json(file_bytes)
    if name.endswith('.csv'):
        return parse_csv(file_bytes)
    raise ValueError('Unsupported file type')


def parse_json(b: bytes):
    """Parse a JSON array (or `{"courses": [...]}`) of course rows."""
    data = json.loads(b.decode('utf-8'))
    if isinstance(data, dict):
        data = data.get('courses', [])
    if not isinstance(data, list):
        raise ValueError('expected a JSON array of courses')
    # non-object entries are kept; the importer fails them per row
    return [normalize_row(item) if isinstance(item, dict) else item for item in data]


def parse_csv(b: bytes):
    """Parse a CSV with a header row, one schedule entry per line."""
    sio = io.StringIO(b.decode('utf-8-sig'))
    reader = csv.DictReader(sio)
    return [normalize_row(row) for row in reader]


def normalize_row(item: dict) -> dict:
    """Map alternative column names onto the canonical row keys."""
    out = {}
    for key, val in item.items():
        if key is None:
            continue
        key = key.strip()
        key = _KEY_ALIASES.get(key, key)
        if isinstance(val, str):
            val = val.strip()
            if val == '':
                val = None
        out[key] = val
    out['credits'] = _coerce_float(out.get('credits'))
    return out


def _coerce_float(val):
    if val is None or str(val).strip() == '':
        return None
    try:
        return float(val)
    except (TypeError, ValueError):
        # left as-is; the importer rejects the row
        return val
