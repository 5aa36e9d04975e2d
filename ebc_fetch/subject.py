"""Claim subject parser.

A claim subject carries four fields (entrant, bonus, odometer, time of
day) and optional free text, e.g. ``"12 BB3 40711 1432 at the pier"``.
The configured patterns must name their groups ``entrant``, ``bonus``,
``odo`` and ``time`` (``extra`` is optional); a pattern without them is
rejected when configuration is loaded.
"""

from __future__ import annotations

import re
from datetime import datetime, tzinfo

from .models import ParsedClaim

DEFAULT_LENIENT_PATTERN = (
    r"(?P<entrant>\w+)\s+(?P<bonus>\w+)\s+(?P<odo>\d+)\s+"
    r"(?P<time>\d{4}-\d\d-\d\dT[\d:.]+(?:Z|[+-]\d\d:\d\d)?|[\d:.]+)"
    r"(?:\s+(?P<extra>.*))?"
)
DEFAULT_STRICT_PATTERN = (
    r"^\s*(?P<entrant>\d+)\s+(?P<bonus>[A-Za-z0-9]+)\s+(?P<odo>\d+)\s+"
    r"(?P<time>\d{4})(?:\s+(?P<extra>.*?))?\s*$"
)

REQUIRED_GROUPS = ("entrant", "bonus", "odo", "time")

_ENTRANT_RE = re.compile(r"[^\d]*(\d+)", re.ASCII)
_DIGITS_RE = re.compile(r"^\d+$", re.ASCII)
_HHMM_RE = re.compile(r"^\d{4}$", re.ASCII)
_RFC3339_RE = re.compile(
    r"^\d{4}-\d\d-\d\d[Tt]\d\d:\d\d(?::\d\d(?:\.\d+)?)?(?:[Zz]|[+-]\d\d:\d\d)?$",
    re.ASCII,
)


def compile_claim_pattern(pattern: str) -> re.Pattern[str]:
    """Compile *pattern*, insisting on the named groups the parser reads."""
    try:
        compiled = re.compile(pattern)
    except re.error as exc:
        raise ValueError(f"claim pattern does not compile: {exc}") from exc
    missing = [name for name in REQUIRED_GROUPS if name not in compiled.groupindex]
    if missing:
        raise ValueError(f"claim pattern lacks named group(s): {', '.join(missing)}")
    return compiled


def extract_entrant_id(token: str) -> int:
    """Leading digit run of *token*, ignoring any decoration before it.

    Organisers like to decorate rider numbers (``"R12"``, ``"12a"``).
    """
    match = _ENTRANT_RE.match(token)
    if match is None:
        return 0
    return int(match.group(1))


def parse_time_token(token: str, tz: tzinfo) -> tuple[datetime | None, str, int, int, bool]:
    """Interpret a claim's time token.

    Returns ``(timestamp, hhmm, hour, minute, valid)``. *timestamp* is only
    set when the token is a full RFC 3339 timestamp.
    """
    if _RFC3339_RE.match(token):
        try:
            stamp = datetime.fromisoformat(token)
        except ValueError:
            stamp = None
        if stamp is not None:
            if stamp.tzinfo is None:
                stamp = stamp.replace(tzinfo=tz)
            return stamp, token, stamp.hour, stamp.minute, True

    hhmm = token.replace(":", "").replace(".", "")
    if not hhmm:
        return None, hhmm, 0, 0, False
    hhmm = hhmm.zfill(4)
    if not _DIGITS_RE.match(hhmm):
        return None, hhmm, 0, 0, False
    hour, minute = divmod(int(hhmm), 100)
    valid = bool(_HHMM_RE.match(hhmm)) and hour < 24 and minute < 60
    return None, hhmm, hour, minute, valid


class SubjectParser:
    """Turns free text into a :class:`ParsedClaim`.

    The lenient pattern decides acceptance; the strict pattern is only used
    for the secondary well-formedness check.
    """

    def __init__(self, lenient_pattern: str, strict_pattern: str, tz: tzinfo) -> None:
        self._lenient = compile_claim_pattern(lenient_pattern)
        self._strict = compile_claim_pattern(strict_pattern)
        self._tz = tz

    def parse(self, text: str, *, strict: bool = False) -> ParsedClaim:
        pattern = self._strict if strict else self._lenient
        match = pattern.search(text)
        if match is None:
            return ParsedClaim()

        fields = match.groupdict()
        entrant, bonus, odo, time_token = (fields.get(name) for name in REQUIRED_GROUPS)
        if strict and None in (entrant, bonus, odo, time_token):
            return ParsedClaim()
        if entrant is None or bonus is None:
            return ParsedClaim()

        entrant_id = extract_entrant_id(entrant)
        bonus_id = bonus.upper()
        if odo is None or time_token is None:
            # Partial parse: entrant/bonus may still be useful to a human.
            return ParsedClaim(entrant_id=entrant_id, bonus_id=bonus_id)

        odometer_valid = bool(_DIGITS_RE.match(odo))
        odometer = int(odo) if odometer_valid else 0
        claim_time, hhmm, hour, minute, time_valid = parse_time_token(time_token, self._tz)

        return ParsedClaim(
            ok=time_valid,
            entrant_id=entrant_id,
            bonus_id=bonus_id,
            odometer=odometer,
            odometer_valid=odometer_valid,
            claim_time=claim_time,
            hhmm=hhmm,
            time_valid=time_valid,
            hour=hour,
            minute=minute,
            extra=(fields.get("extra") or "").strip(),
        )
