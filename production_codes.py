"""
Production Code Extraction
Finds studio production codes (e.g. "#6ABX08") in OCR text lines and
normalizes the historical formats into one canonical lookup key.
"""

import re
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple


@dataclass(frozen=True)
class CodeFormat:
    """One historical surface format of a production code."""
    name: str
    pattern: "re.Pattern[str]"
    canonicalize: Callable[["re.Match[str]"], str]


def _episode_digits(text: str) -> str:
    # OCR regularly reads the zero in the episode number as a letter O
    return text.upper().replace("O", "0")


def _lettered_x(match: "re.Match[str]") -> str:
    return f"{match['season']}{match['letters'].upper()}X{_episode_digits(match['episode'])}"


def _lettered(match: "re.Match[str]") -> str:
    return f"{match['season']}{match['letters'].upper()}{_episode_digits(match['episode'])}"


def _classic(match: "re.Match[str]") -> str:
    return f"{match['season']}X{_episode_digits(match['episode'])}"


# Evaluated in priority order; a span claimed by one rule is not re-matched.
# - Seasons 6-9:   #6ABX08  (<season><2 letters>X<episode>)
# - Seasons 10-11: #1AYW01  (<season><3 letters><episode>), '#' required unless compact
# - Seasons 1-5:   #3X22    (<season>X<episode>), '#' required
CODE_FORMATS: List[CodeFormat] = [
    CodeFormat(
        name="lettered-x",
        pattern=re.compile(
            r"(?<![A-Z0-9])#?\s*(?P<season>\d)\s*(?P<letters>[A-Z]{2})\s*X\s*"
            r"(?P<episode>[\dO]{2})(?![A-Z0-9])",
            re.IGNORECASE,
        ),
        canonicalize=_lettered_x,
    ),
    CodeFormat(
        name="lettered",
        pattern=re.compile(
            r"#\s*(?P<season>\d)\s*(?P<letters>[A-Z]{3})\s*"
            r"(?P<episode>[\dO]{2})(?![A-Z0-9])",
            re.IGNORECASE,
        ),
        canonicalize=_lettered,
    ),
    CodeFormat(
        name="lettered-compact",
        pattern=re.compile(
            r"(?<![A-Z0-9#])(?P<season>\d)(?P<letters>[A-Z]{3})(?P<episode>[\dO]{2})(?![A-Z0-9])",
            re.IGNORECASE,
        ),
        canonicalize=_lettered,
    ),
    CodeFormat(
        name="classic",
        pattern=re.compile(
            r"#\s*(?P<season>\d{1,2})\s*X\s*(?P<episode>[\dO]{2,3})(?![A-Z0-9])",
            re.IGNORECASE,
        ),
        canonicalize=_classic,
    ),
]

SXXEXX_PATTERN = re.compile(r"^\s*S(\d{1,2})\s*E(\d{1,3})\s*$", re.IGNORECASE)
NXNN_PATTERN = re.compile(r"^\s*(\d{1,2})\s*X\s*(\d{1,3})\s*$", re.IGNORECASE)


def find_codes(line: str) -> List[str]:
    """
    Find every production code in a single line of text.

    Args:
        line: One recognized text line

    Returns:
        Canonical codes in order of appearance (may contain duplicates)
    """
    claimed: List[Tuple[int, int]] = []
    found: List[Tuple[int, str]] = []

    for code_format in CODE_FORMATS:
        for match in code_format.pattern.finditer(line):
            start, end = match.span()
            if any(start < c_end and c_start < end for c_start, c_end in claimed):
                continue
            claimed.append((start, end))
            found.append((start, code_format.canonicalize(match)))

    return [code for _, code in sorted(found)]


def canonicalize_code(text: str) -> Optional[str]:
    """
    Canonicalize a string that should be exactly one production code.

    The leading '#' is optional here for every format.

    Returns:
        Canonical code, or None if the text is not a supported format
    """
    if not text or not text.strip():
        return None

    candidate = text.strip()
    if not candidate.startswith("#"):
        candidate = "#" + candidate

    for code_format in CODE_FORMATS:
        match = code_format.pattern.fullmatch(candidate)
        if match:
            return code_format.canonicalize(match)
    return None


def normalize_code(text: str) -> Optional[str]:
    """
    Turn any production code string into a cache key.

    Supported formats get their canonical form; anything else (other
    shows number their episodes differently) is uppercased with '#'
    and whitespace removed.
    """
    canonical = canonicalize_code(text)
    if canonical:
        return canonical
    squashed = re.sub(r"\s+", "", text or "").lstrip("#").upper()
    return squashed or None


def extract_production_code(lines: Iterable[str]) -> Optional[str]:
    """
    Pick the production code out of pooled OCR lines.

    A line containing two different codes is ambiguous and ignored.
    A code seen on more than one line is preferred, since repetition
    across frames rules out one-off OCR artifacts. Without repetition
    a single distinct code is returned; several distinct codes count
    as "not found".

    Args:
        lines: Recognized text lines, in input order

    Returns:
        Canonical production code, or None
    """
    occurrences: Counter = Counter()
    first_seen: List[str] = []

    for line in lines:
        codes = set(find_codes(line))
        if len(codes) != 1:
            continue
        code = codes.pop()
        occurrences[code] += 1
        if code not in first_seen:
            first_seen.append(code)

    repeated = sorted(
        ((count, code) for code, count in occurrences.items() if count > 1),
        reverse=True,
    )
    if repeated:
        if len(repeated) > 1 and repeated[0][0] == repeated[1][0]:
            return None
        return repeated[0][1]

    if len(first_seen) == 1:
        return first_seen[0]

    return None


def parse_season_episode(text: str, allow_x_form: bool = True) -> Optional[Tuple[int, int]]:
    """
    Parse "S06E08" into (season, episode).

    "6x08" is also accepted unless allow_x_form is False; where a
    production code may be typed, that shape is a classic code instead.
    """
    if not text:
        return None
    match = SXXEXX_PATTERN.match(text)
    if not match and allow_x_form:
        match = NXNN_PATTERN.match(text)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))
