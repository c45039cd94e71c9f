from __future__ import annotations

"""
Settings-string grammar.

    token   := part ('_' part)*
    part    := payload key           (canonical: "200w", "16x9r", "2x")
             | key payload           (also accepted: "w200", "r16x9", "x2")
    key     := single ASCII letter
    payload := number            for every key except 'r'
             | number 'x' number for 'r' (aspect ratio, width x height)

A payload always starts and ends with a digit, so exactly one end of a valid
part is a letter and the two spellings never overlap.

Known keys: w (width), h (height), r (aspect ratio), x (multiplier).
Unknown letters are kept in the parsed mapping and ignored downstream.
Duplicate keys: the last occurrence wins.
"""

import math
import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

from dynamic_image_style.errors import InvalidToken

Number = Union[int, float]
ParsedSettings = Dict[str, Union[Number, str]]

RATIO_KEY = "r"
MULTIPLIER_KEY = "x"

_KEY_RE = re.compile(r"[A-Za-z]")
_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?", re.ASCII)
_RATIO_RE = re.compile(r"(\d+(?:\.\d+)?)x(\d+(?:\.\d+)?)", re.ASCII)


def _to_number(raw: str) -> Number:
    try:
        return int(raw) if raw.isdigit() else float(raw)
    except ValueError:
        # int() refuses strings beyond sys.get_int_max_str_digits()
        raise InvalidToken(f"Numeric value {raw[:16]!r}... is too long.") from None


def _as_float(value: Union[Number, str], key: str) -> float:
    try:
        return float(value)
    except OverflowError:
        raise InvalidToken(f"Value for {key!r} is out of range.") from None


def split_part(part: str) -> Tuple[str, str]:
    """Return (key, payload) for one part, in either spelling."""
    if len(part) < 2:
        raise InvalidToken(f"Malformed settings part {part!r}.")
    if _KEY_RE.fullmatch(part[-1]):
        return part[-1], part[:-1]
    if _KEY_RE.fullmatch(part[0]):
        return part[0], part[1:]
    raise InvalidToken(f"Settings part {part!r} has no key letter.")


def parse_settings(token: str) -> ParsedSettings:
    """
    Parse a settings string into {key: value}.

    Raises InvalidToken for an empty part, a part without a key letter, an
    empty or non-numeric payload, or a ratio that is not `<num>x<num>`.
    """
    if not isinstance(token, str) or not token:
        raise InvalidToken("Settings string is empty.")

    settings: ParsedSettings = {}
    for part in token.split("_"):
        key, payload = split_part(part)
        if key == RATIO_KEY:
            if not _RATIO_RE.fullmatch(payload):
                raise InvalidToken(f"Malformed aspect ratio {payload!r}.")
            settings[key] = payload
        else:
            if not _NUMBER_RE.fullmatch(payload):
                raise InvalidToken(f"Non-numeric value {payload!r} for {key!r}.")
            settings[key] = _to_number(payload)
    return settings


def parse_ratio(raw: str) -> Tuple[float, float]:
    m = _RATIO_RE.fullmatch(raw)
    if not m:
        raise InvalidToken(f"Malformed aspect ratio {raw!r}.")
    return float(m.group(1)), float(m.group(2))


@dataclass(frozen=True)
class ResolvedDimensions:
    """Target size after ratio + multiplier resolution; either side may be absent."""
    width: Optional[int] = None
    height: Optional[int] = None

    def as_dict(self) -> Dict[str, int]:
        out: Dict[str, int] = {}
        if self.width is not None:
            out["w"] = self.width
        if self.height is not None:
            out["h"] = self.height
        return out


def resolve_dimensions(settings: ParsedSettings) -> ResolvedDimensions:
    """
    Resolution order:
      1) ratio fills in the missing side when exactly one of w/h is given
      2) multiplier scales the width (an unset width counts as 0) and the
         height when it is set
      3) ceiling to int
    Any resulting side <= 0, or one too large to represent, raises InvalidToken.
    So `h100_2x` and a bare `2x` are rejected.
    """
    w: Optional[float] = _as_float(settings["w"], "w") if "w" in settings else None
    h: Optional[float] = _as_float(settings["h"], "h") if "h" in settings else None

    if RATIO_KEY in settings:
        rw, rh = parse_ratio(str(settings[RATIO_KEY]))
        if rh == 0:
            raise InvalidToken(f"Aspect ratio {settings[RATIO_KEY]!r} has a zero height.")
        ratio = rw / rh
        if w is not None and h is None:
            if ratio == 0:
                raise InvalidToken(f"Aspect ratio {settings[RATIO_KEY]!r} yields no height.")
            h = w / ratio
        elif h is not None and w is None:
            w = h * ratio

    if MULTIPLIER_KEY in settings:
        multiplier = _as_float(settings[MULTIPLIER_KEY], MULTIPLIER_KEY)
        w = (w or 0.0) * multiplier
        if h is not None:
            h *= multiplier

    for name, value in (("width", w), ("height", h)):
        if value is not None and not math.isfinite(value):
            raise InvalidToken(f"Resolved {name} is out of range.")

    width = int(math.ceil(w)) if w is not None else None
    height = int(math.ceil(h)) if h is not None else None

    for name, value in (("width", width), ("height", height)):
        if value is not None and value <= 0:
            raise InvalidToken(f"Resolved {name} must be positive, got {value}.")
    return ResolvedDimensions(width=width, height=height)
