#!/usr/bin/env python3

import re
from typing import Optional

# "RX: -19.8 dBm", "-21.30dBm", "(-18.697dBm)"
DBM_VALUE_PATTERN = re.compile(r'(-?\d+(?:\.\d+)?)\s*dBm', re.IGNORECASE)

# shelf/slot/pon/ont/x, e.g. 1/1/3/2/1
ONT_PATH_PATTERN = re.compile(r'^\d+/\d+/\d+/\d+/\d+$')


def _first_dbm_value(text: str) -> Optional[float]:
    match = DBM_VALUE_PATTERN.search(text)
    if not match:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        return None


def parse_rx_dbm(raw) -> Optional[float]:
    """Extract the received optical power in dBm from free-text CLI output.

    Lines mentioning both "RX" and "dBm" are tried first, in order; the first
    one carrying a number right before a dBm unit wins. Failing that, the first
    dBm value anywhere in the text is used. Returns None when there is none.
    """
    if not raw or not isinstance(raw, str):
        return None

    for line in re.split(r'\r?\n', raw):
        lowered = line.lower()
        if 'rx' in lowered and 'dbm' in lowered:
            value = _first_dbm_value(line)
            if value is not None:
                return value

    return _first_dbm_value(raw)


def is_valid_ont_path(ont_path) -> bool:
    return isinstance(ont_path, str) and bool(ONT_PATH_PATTERN.match(ont_path))
