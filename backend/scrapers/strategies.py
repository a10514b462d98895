"""
Field extraction strategies.

Every field is read through an ordered chain of (predicate, extractor)
strategies; the first strategy whose predicate holds and whose extractor
returns a non-empty value wins. Helpers here are small pure functions over
BeautifulSoup documents and strings:

- text normalization (whitespace collapse, repeated-substring removal)
- Optional-returning number / price / area parsers (never raise)
- metric -> imperial area conversion
- labeled row scans with a body-text regex fallback
"""
import re
from typing import Any, Callable, Iterable, List, Optional, Pattern, Sequence, Tuple, Union

from bs4 import BeautifulSoup

SQM_TO_SQFT = 10.764

Strategy = Tuple[Callable[[Any], bool], Callable[[Any], Any]]

_NUMBER_PATTERN = re.compile(r"\d[\d\s\u00a0\u202f,.]*")
_METRIC_UNITS = ("m²", "m2", "sq m", "sq. m", "mètres carrés", "metres carres", "square meters")


def always(_context) -> bool:
    return True


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict, tuple, set)):
        return len(value) == 0
    return False


def first_match(chain: Sequence[Strategy], context: Any) -> Any:
    """Run a strategy chain and return the first non-empty result (or None)."""
    for predicate, extractor in chain:
        if not predicate(context):
            continue
        value = extractor(context)
        if not is_empty(value):
            return value
    return None


# =============================================================================
# Text normalization
# =============================================================================

def clean_text(text: Optional[str]) -> Optional[str]:
    """Collapse whitespace; empty results become None."""
    if text is None:
        return None
    cleaned = re.sub(r"\s+", " ", str(text)).strip()
    return cleaned or None


def remove_repeated(text: Optional[str]) -> Optional[str]:
    """
    Remove a value rendered twice back to back.

    "Condo for rentCondo for rent" -> "Condo for rent"
    "Duplex Duplex" -> "Duplex"
    """
    cleaned = clean_text(text)
    if not cleaned:
        return cleaned
    compact = cleaned.replace(" ", "")
    half = len(cleaned) // 2
    for candidate in (cleaned[:half], cleaned[:half + 1]):
        candidate = candidate.strip()
        if candidate and compact == (candidate + candidate).replace(" ", ""):
            return candidate
    # Pieces glued on capital letters, keep first occurrence of each
    parts = re.split(r"(?=[A-Z])", cleaned)
    unique: List[str] = []
    for part in parts:
        if part and part not in unique:
            unique.append(part)
    return "".join(unique).strip() or None


def first_line(text: Optional[str]) -> Optional[str]:
    """First non-empty line of a multi-line block."""
    if not text:
        return None
    for line in str(text).splitlines():
        line = clean_text(line)
        if line:
            return line
    return None


# =============================================================================
# Numbers
# =============================================================================

def _normalize_number_token(token: str) -> Optional[str]:
    token = re.sub(r"[\s\u00a0\u202f]", "", token).rstrip(",.")
    if not token:
        return None
    if "," in token and "." in token:
        # 1,250,000.50 -> thousands commas
        token = token.replace(",", "")
    elif "," in token:
        # French decimal comma (1,5) vs thousands separator (1,250)
        head, _, tail = token.rpartition(",")
        if len(tail) == 3 and head.replace(",", "").isdigit():
            token = token.replace(",", "")
        else:
            token = head.replace(",", "") + "." + tail
    elif token.count(".") > 1:
        token = token.replace(".", "")
    return token


def parse_number(text: Any) -> Optional[float]:
    """First number in text, tolerant of spaces, nbsp and , / . separators."""
    if text is None:
        return None
    if isinstance(text, (int, float)):
        return float(text)
    match = _NUMBER_PATTERN.search(str(text))
    if not match:
        return None
    token = _normalize_number_token(match.group(0))
    if not token:
        return None
    try:
        return float(token)
    except ValueError:
        return None


def parse_price(text: Any) -> Optional[float]:
    """Positive monetary amount, or None."""
    value = parse_number(text)
    if value is None or value <= 0:
        return None
    return value


def parse_int(text: Any) -> Optional[int]:
    """First integer in text ("4½ pièces" -> 4)."""
    if text is None:
        return None
    if isinstance(text, int):
        return text
    match = re.search(r"\d+", str(text))
    return int(match.group(0)) if match else None


def parse_decimal(text: Any) -> Optional[float]:
    """First integer or decimal ("1.5 salle de bain" -> 1.5)."""
    if text is None:
        return None
    match = re.search(r"\d+(?:[.,]\d+)?", str(text))
    if not match:
        return None
    return float(match.group(0).replace(",", "."))


def parse_year(text: Any, minimum: int = 1600, maximum: int = 2100) -> Optional[int]:
    """Four-digit construction year within [minimum, maximum]."""
    if text is None:
        return None
    match = re.search(r"\b(19\d{2}|20\d{2})\b", str(text))
    if not match:
        return None
    year = int(match.group(1))
    if year < minimum or year > maximum:
        return None
    return year


def is_metric_area(text: str) -> bool:
    lower = text.lower()
    return any(unit in lower for unit in _METRIC_UNITS)


def parse_area_sqft(text: Any) -> Optional[int]:
    """
    Area in square feet. Metric values are converted (x 10.764, rounded);
    anything else is taken as square feet.

    "46 m²" -> 495, "500 sq ft" -> 500
    """
    if text is None:
        return None
    value = parse_number(text)
    if value is None:
        return None
    if is_metric_area(str(text)):
        return round(value * SQM_TO_SQFT)
    return round(value)


# =============================================================================
# Document helpers
# =============================================================================

def make_soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def select_text(soup, selector: str) -> Optional[str]:
    """Text of the first element matching selector."""
    element = soup.select_one(selector)
    if element is None:
        return None
    return clean_text(element.get_text(" "))


def select_attr(soup, selector: str, attr: str) -> Optional[str]:
    element = soup.select_one(selector)
    if element is None:
        return None
    value = element.get(attr)
    return clean_text(value) if isinstance(value, str) else None


def text_chain(*selectors: str) -> List[Strategy]:
    """Strategy chain reading element text, one strategy per selector."""
    return [(always, lambda soup, s=s: select_text(soup, s)) for s in selectors]


def attr_chain(*pairs: Tuple[str, str]) -> List[Strategy]:
    """Strategy chain reading an attribute, one strategy per (selector, attr)."""
    return [(always, lambda soup, s=s, a=a: select_attr(soup, s, a)) for s, a in pairs]


def body_text(soup) -> str:
    body = soup.body or soup
    return body.get_text(" ")


def body_regex(soup, pattern: Union[str, Pattern], group: int = 1) -> Optional[str]:
    """Regex over the visible body text."""
    regex = re.compile(pattern, re.IGNORECASE) if isinstance(pattern, str) else pattern
    match = regex.search(body_text(soup))
    return clean_text(match.group(group)) if match else None


def labeled_row_value(
    soup,
    label_pattern: Union[str, Pattern],
    row_selector: str,
    cell_selector: str,
    parser: Callable[[Any], Optional[float]] = parse_price,
) -> Optional[float]:
    """
    Scan rows for a label and parse the value cell of the first matching row
    that yields a positive number.
    """
    regex = re.compile(label_pattern, re.IGNORECASE) if isinstance(label_pattern, str) else label_pattern
    for row in soup.select(row_selector):
        if not regex.search(row.get_text(" ")):
            continue
        cells = row.select(cell_selector)
        cell_text = " ".join(c.get_text(" ") for c in cells[:1])
        value = parser(cell_text)
        if value is not None and value > 0:
            return value
    return None


def html_regex_amount(html: str, label_pattern: Union[str, Pattern]) -> Optional[float]:
    """Fallback: label followed by an amount ending in '$' anywhere in the markup."""
    source = label_pattern.pattern if hasattr(label_pattern, "pattern") else label_pattern
    match = re.search(source + r"[\s\S]*?([\d\s\xa0,]+)\s*\$", html or "", re.IGNORECASE)
    if not match:
        return None
    return parse_price(match.group(1).replace("\xa0", " "))


def unique(values: Iterable[Optional[str]]) -> List[str]:
    """Drop empties and duplicates, keeping first occurrence order."""
    seen: List[str] = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen
