"""
String similarity primitives shared by all matchers.

Every function here is pure and total: malformed or missing input yields
0 / False / "" rather than an exception.
"""

from typing import Optional
import math
import re
import unicodedata

from rapidfuzz.distance import Levenshtein

# Legal-entity suffixes, applied in order, each removed at most once from
# the end of a lowercased name. The lookbehind keeps suffixes from eating
# the tail of a word ("hotdog" must not lose "og").
_SUFFIX_PATTERNS = [
    # German / Austrian
    r"gmbh",
    r"g\.m\.b\.h\.",
    r"ges\.?m\.?b\.?h\.?",
    r"ag",
    r"kg",
    r"ohg",
    r"og",
    r"e\.?u\.?",
    r"einzelunternehmen",
    r"genossenschaft",
    r"gen\.?",
    r"&\s*co\.?\s*(?:kg|ohg)?",
    r"mbh",
    # English
    r"ltd\.?",
    r"limited",
    r"inc\.?",
    r"incorporated",
    r"corp\.?",
    r"corporation",
    r"llc",
    r"llp",
    r"plc",
    r"co\.?",
    r"company",
    # French
    r"s\.?a\.?",
    r"s\.?a\.?r\.?l\.?",
    r"sarl",
    r"sas",
    r"s\.?a\.?s\.?",
    # Italian
    r"s\.?r\.?l\.?",
    r"srl",
    r"s\.?p\.?a\.?",
    r"spa",
    # Spanish
    r"s\.?l\.?",
    r"sl",
    # Dutch
    r"b\.?v\.?",
    r"bv",
    r"n\.?v\.?",
    r"nv",
]

COMPANY_SUFFIXES = [
    re.compile(rf"\s*(?<![a-z0-9]){suffix}\s*$", re.IGNORECASE) for suffix in _SUFFIX_PATTERNS
]

_GERMAN_TRANSLITERATION = str.maketrans({"ä": "ae", "ö": "oe", "ü": "ue", "ß": "ss"})
_PHONETIC_FOLD = str.maketrans({"ä": "a", "ö": "o", "ü": "u", "ß": "ss"})


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive scores (Python rounds to even)."""
    return int(math.floor(value + 0.5))


def fold_diacritics(text: str) -> str:
    """Drop combining marks, e.g. 'café' -> 'cafe'."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_iban(iban: Optional[str]) -> str:
    """Remove whitespace and uppercase."""
    if not iban:
        return ""
    return re.sub(r"\s+", "", iban).upper()


def normalize_url(url: Optional[str]) -> str:
    """Reduce a URL to its bare host and path for substring matching."""
    if not url:
        return ""
    normalized = url.lower().strip()
    normalized = re.sub(r"^https?://", "", normalized)
    normalized = re.sub(r"^www\.", "", normalized)
    normalized = normalized.split("?")[0].split("#")[0]
    return normalized.rstrip("/")


def normalize_company_name(name: Optional[str]) -> str:
    """
    Normalize a company name for comparison.

    Strips legal-entity suffixes, transliterates German umlauts, folds other
    diacritics, replaces punctuation with spaces and collapses whitespace.

    Args:
        name: Raw company name

    Returns:
        Normalized name, or "" for empty input
    """
    if not name:
        return ""

    normalized = name.lower().strip()
    for suffix in COMPANY_SUFFIXES:
        normalized = suffix.sub("", normalized, count=1)

    normalized = fold_diacritics(normalized.translate(_GERMAN_TRANSLITERATION))
    normalized = re.sub(r"[^a-z0-9\s]", " ", normalized)
    return re.sub(r"\s+", " ", normalized).strip()


def cologne_phonetic(text: Optional[str]) -> str:
    """
    Cologne phonetics (Koelner Phonetik) code of a string.

    Similar sounding names share a code: "Meier", "Mayer" and "Maier" all
    map to "67". Zeros are dropped entirely, so a string made only of
    vowels codes to "0".

    Args:
        text: Input string

    Returns:
        Digit string, or "" for input without letters
    """
    if not text:
        return ""

    s = re.sub(r"[^a-z]", "", fold_diacritics(text.lower().translate(_PHONETIC_FOLD)))
    if not s:
        return ""

    codes = []
    for i, char in enumerate(s):
        prev = s[i - 1] if i > 0 else ""
        nxt = s[i + 1] if i < len(s) - 1 else ""

        if char in "aeiouyj":
            code = "0"
        elif char == "h":
            code = ""
        elif char == "b":
            code = "1"
        elif char == "p":
            code = "3" if nxt == "h" else "1"
        elif char in "dt":
            code = "8" if nxt in ("c", "s", "z") else "2"
        elif char in "fvw":
            code = "3"
        elif char in "gkq":
            code = "4"
        elif char == "c":
            if i == 0:
                code = "4" if nxt and nxt in "ahkloqrux" else "8"
            else:
                code = "4" if (nxt and nxt in "ahkoqux") and prev not in ("s", "z") else "8"
        elif char == "x":
            code = "8" if prev in ("c", "k", "q") else "48"
        elif char == "l":
            code = "5"
        elif char in "mn":
            code = "6"
        elif char == "r":
            code = "7"
        elif char in "sz":
            code = "8"
        else:
            code = ""
        codes.append(code)

    result = []
    last = ""
    for digit in "".join(codes):
        if digit != last:
            result.append(digit)
            last = digit

    return "".join(result).replace("0", "") or "0"


def _edit_similarity(s1: str, s2: str) -> int:
    if not s1 or not s2:
        return 0
    if s1 == s2:
        return 100
    max_len = max(len(s1), len(s2))
    distance = Levenshtein.distance(s1, s2)
    return round_half_up((max_len - distance) / max_len * 100)


def normalized_similarity(a: Optional[str], b: Optional[str]) -> int:
    """
    Edit-distance similarity of two strings on a 0-100 scale.

    Comparison is case-insensitive and ignores surrounding whitespace.
    Empty input on either side scores 0.
    """
    if not a or not b:
        return 0
    return _edit_similarity(a.lower().strip(), b.lower().strip())


def company_name_similarity(name1: Optional[str], name2: Optional[str]) -> int:
    """
    Similarity of two company names on a 0-100 scale.

    Scoring after normalization:
        - identical: 100
        - same phonetic code (at least 2 digits): 92
        - one contains the other: 75-100 scaled by length coverage
        - otherwise edit-distance similarity

    Args:
        name1: First company name
        name2: Second company name

    Returns:
        Similarity score; 0 if either name normalizes to nothing
    """
    n1 = normalize_company_name(name1)
    n2 = normalize_company_name(name2)

    if not n1 or not n2:
        return 0
    if n1 == n2:
        return 100

    phonetic1 = cologne_phonetic(n1)
    if len(phonetic1) >= 2 and phonetic1 == cologne_phonetic(n2):
        return 92

    if n1 in n2 or n2 in n1:
        shorter, longer = sorted((n1, n2), key=len)
        return round_half_up(75 + len(shorter) / len(longer) * 25)

    return _edit_similarity(n1, n2)


def _fold_for_glob(text: str) -> str:
    return fold_diacritics(text.lower().translate(_GERMAN_TRANSLITERATION))


def glob_match(pattern: Optional[str], text: Optional[str]) -> bool:
    """
    Case-insensitive glob match where ``*`` matches any run of characters.

    The pattern must cover the whole text. Empty input never matches and
    a pattern that cannot be compiled fails closed.

    Args:
        pattern: Glob pattern, e.g. "amazon*"
        text: Text to test

    Returns:
        True if the text matches
    """
    if not pattern or not text:
        return False

    try:
        parts = _fold_for_glob(pattern).split("*")
        regex = ".*".join(re.escape(part) for part in parts)
        return re.fullmatch(regex, _fold_for_glob(text), re.DOTALL) is not None
    except (re.error, TypeError, AttributeError):
        return False


def match_pattern_flexible(
    pattern: Optional[str],
    name: Optional[str],
    partner: Optional[str],
    reference: Optional[str] = None,
) -> bool:
    """
    Match a glob against transaction text fields in several arrangements.

    Learned patterns may have been built from any single field or from
    fields joined in different orders, so each field is tried alone and
    then the common concatenations.
    """
    if not pattern:
        return False

    fields = [f for f in (name, partner, reference) if f]
    for value in fields:
        if glob_match(pattern, value):
            return True

    combinations = []
    if name and partner:
        combinations.append(f"{name} {partner}")
        combinations.append(f"{partner} {name}")
    if len(fields) == 3:
        combinations.append(f"{name} {partner} {reference}")
        combinations.append(f"{partner} {name} {reference}")
    elif name and reference:
        combinations.append(f"{name} {reference}")
    elif partner and reference:
        combinations.append(f"{partner} {reference}")

    return any(glob_match(pattern, text) for text in combinations)
