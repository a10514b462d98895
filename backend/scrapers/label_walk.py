"""
Label-then-sibling extraction.

Structured registry and evaluation pages render fields as a label element
followed by one or more value elements. The walk:

1. find the element whose whole text equals the label (case-insensitive,
   whitespace collapsed, trailing colon ignored), preferring the deepest one
2. walk forward through its following siblings and return the first
   non-empty text that is not itself a known label

The same functions run over any BeautifulSoup tree: the rendered page HTML
captured by the browser navigator, or HTML pasted from a manual capture, so
both paths extract identically.
"""
import re
from typing import Iterable, List, Optional

from bs4 import BeautifulSoup, Tag

# Labels climb at most this many wrapper levels looking for value siblings
MAX_WRAPPER_DEPTH = 2


def normalize_label(text: Optional[str]) -> str:
    if not text:
        return ""
    text = text.replace("\u2019", "'")
    return re.sub(r"\s+", " ", text).strip().rstrip(":").strip().casefold()


def node_text(node: Tag) -> str:
    return re.sub(r"\s+", " ", node.get_text(" ")).strip()


def parse_document(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def _deepest(element: Tag, target: str) -> Tag:
    current = element
    while True:
        child = next(
            (c for c in current.find_all(True, recursive=False)
             if normalize_label(c.get_text(" ")) == target),
            None,
        )
        if child is None:
            return current
        current = child


def find_labels(root: Tag, label: str) -> List[Tag]:
    """All label elements matching label exactly, innermost match per subtree."""
    target = normalize_label(label)
    if not target:
        return []
    matches: List[Tag] = []
    for element in root.find_all(True):
        if normalize_label(element.get_text(" ")) != target:
            continue
        deepest = _deepest(element, target)
        if deepest not in matches:
            matches.append(deepest)
    return matches


def find_label(root: Tag, label: str) -> Optional[Tag]:
    found = find_labels(root, label)
    return found[0] if found else None


def value_after(label_element: Tag, known_labels: Iterable[str] = ()) -> Optional[str]:
    """First non-empty, non-label text among the label's following siblings."""
    stop = {normalize_label(l) for l in known_labels}
    own = normalize_label(label_element.get_text(" "))
    stop.add(own)

    element = label_element
    for _ in range(MAX_WRAPPER_DEPTH + 1):
        for sibling in element.find_next_siblings(True):
            text = node_text(sibling)
            if text and normalize_label(text) not in stop:
                return text
        parent = element.parent
        # Climb only through wrappers that hold nothing but the label
        if parent is None or normalize_label(parent.get_text(" ")) != own:
            break
        element = parent
    return None


def field_value(root: Optional[Tag], label: str, known_labels: Iterable[str] = ()) -> str:
    """Value for label under root, or '' when the label or its value is absent."""
    if root is None:
        return ""
    element = find_label(root, label)
    if element is None:
        return ""
    return value_after(element, known_labels) or ""


def list_after_heading(root: Tag, heading: str, heading_tags=("h2", "h3", "h4")) -> Optional[Tag]:
    """The first <ul> following the heading whose text contains heading."""
    wanted = normalize_label(heading)
    for element in root.find_all(list(heading_tags)):
        if wanted in normalize_label(element.get_text(" ")):
            found = element.find_next_sibling("ul")
            if found is not None:
                return found
    return None


def list_after_anchor(root: Tag, anchor_id: str) -> Optional[Tag]:
    """The first <ul> following the element with id anchor_id."""
    anchor = root.find(id=anchor_id)
    if anchor is None:
        return None
    found = anchor.find_next_sibling("ul")
    if found is None and anchor.parent is not None:
        found = anchor.parent.find_next_sibling("ul")
    return found


def container_of(element: Tag, levels: int = 1) -> Tag:
    """Ancestor levels up from element (stops at the root)."""
    current = element
    for _ in range(levels):
        if current.parent is None or current.parent.name == "[document]":
            break
        current = current.parent
    return current
