"""
Parsing (handbook HTML -> structured data).

- Search-results pages  -> SubjectStub list + page count
- Subject detail pages  -> overview paragraphs, availability, credit points
- Assessment pages      -> assessment tables + instructor emails per study period

Important rules (DO NOT CHANGE):
- Every piece of text leaving the markup goes through clean_text()
  (keeps the snapshot diff-stable across re-scrapes)
- Missing markup is never an error: parsers return empty results
"""

from __future__ import annotations

import math
import re
from typing import Dict, Iterator, List, Optional, Union

from bs4 import BeautifulSoup, Tag

from unitracker.model import AssessmentTable, Number, SubjectStub


Document = Union[str, bytes, BeautifulSoup]


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------

# [^\S\n] = any whitespace except newline
_WS_AROUND_NEWLINE = re.compile(r"[^\S\n]*\n[^\S\n]*")
_HSPACE_RUN = re.compile(r"[^\S\n]+")
_MANY_NEWLINES = re.compile(r"\n{3,}")
_PARAGRAPH_BREAK = re.compile(r"\n{2,}")

EMAIL_RE = re.compile(r"[A-Z0-9._%+-]+@(?:[A-Z0-9-]+\.)+[A-Z]{2,}", re.IGNORECASE)
PAGE_RE = re.compile(r"\bpage=(\d+)")
HEADING_RE = re.compile(r"^h([1-6])$")


def clean_text(value: object) -> str:
    """
    Normalize text extracted from markup.

    - whitespace around newlines is removed
    - runs of spaces/tabs collapse to one space
    - 3+ newlines collapse to exactly one blank line
    - ends are trimmed
    """
    if value is None:
        return ""
    text = value if isinstance(value, str) else str(value)
    text = _WS_AROUND_NEWLINE.sub("\n", text)
    text = _HSPACE_RUN.sub(" ", text)
    text = _MANY_NEWLINES.sub("\n\n", text)
    return text.strip()


def extract_emails(text: Optional[str]) -> List[str]:
    """
    Return every email-shaped token in `text`.

    Duplicates are dropped case-insensitively; the first spelling wins.
    """
    if not text:
        return []
    seen: set[str] = set()
    out: List[str] = []
    for match in EMAIL_RE.findall(text):
        email = match.strip()
        key = email.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(email)
    return out


def period_pattern(label: str) -> re.Pattern[str]:
    # "Semester 1" also matches "semester1" and "SEMESTER  1"
    words = label.split()
    return re.compile(r"\s*".join(re.escape(w) for w in words), re.IGNORECASE)


def mentions_period(text: Optional[str], label: str) -> bool:
    return bool(text) and period_pattern(label).search(text or "") is not None


# ---------------------------------------------------------------------------
# DOM helpers
# ---------------------------------------------------------------------------


def make_soup(doc: Document) -> BeautifulSoup:
    """
    Accept raw HTML or an already parsed document.
    """
    if isinstance(doc, BeautifulSoup):
        return doc
    return BeautifulSoup(doc or "", "html.parser")


def _text(node: Optional[Tag]) -> str:
    return clean_text(node.get_text()) if node is not None else ""


def heading_level(node: Tag) -> Optional[int]:
    """
    Return 1..6 for <h1>..<h6>, otherwise None.
    """
    m = HEADING_RE.match(node.name or "")
    return int(m.group(1)) if m else None


def iter_section(heading: Tag, max_level: int) -> Iterator[Tag]:
    """
    Yield the element siblings that follow `heading` until the next heading
    of level <= max_level (or the end of the parent).
    """
    for sibling in heading.find_next_siblings():
        level = heading_level(sibling)
        if level is not None and level <= max_level:
            break
        yield sibling


def find_heading(soup: BeautifulSoup, names: List[str], label: str) -> Optional[Tag]:
    """
    First heading (in document order) among `names` whose text contains `label`.
    """
    needle = label.lower()
    for node in soup.find_all(names):
        if needle in clean_text(node.get_text()).lower():
            return node
    return None


# ---------------------------------------------------------------------------
# Search results
# ---------------------------------------------------------------------------


def parse_search_page(html: Document) -> List[SubjectStub]:
    """
    Parse one search-results page into subject stubs.

    Rows without a subject code are skipped.
    """
    soup = make_soup(html)
    items: List[SubjectStub] = []

    for node in soup.select(".search-result-item"):
        code = _text(node.select_one(".search-result-item__code"))
        if not code:
            continue

        # The name element usually repeats the code ("MAST10006 Calculus 2")
        name_text = _text(node.select_one(".search-result-item__name"))
        name = clean_text(re.sub(re.escape(code), "", name_text, count=1, flags=re.IGNORECASE)) or name_text

        anchor = node.select_one("a.search-result-item__anchor")
        href = anchor.get("href") if anchor is not None else None

        items.append(
            SubjectStub(
                code=code,
                name=name,
                href=href or None,
                offered=_text(node.select_one(".search-result-item__meta-primary")),
            )
        )

    return items


def parse_max_page(html: Document) -> int:
    """
    Highest page number referenced by any pagination link; 1 if none.
    """
    raw = html if isinstance(html, str) else str(html or "")
    pages = [int(m) for m in PAGE_RE.findall(raw)]
    return max([1, *pages])


# ---------------------------------------------------------------------------
# Subject detail page
# ---------------------------------------------------------------------------


def parse_overview(doc: Document) -> List[str]:
    """
    Overview paragraphs, in page order.

    Sub-box widgets inside the wrapper (availability etc.) are structural
    and skipped.
    """
    soup = make_soup(doc)
    wrapper = soup.select_one(".course__overview-wrapper")
    if wrapper is None:
        return []

    parts: List[str] = []
    for child in wrapper.find_all(recursive=False):
        if "course__overview-box" in (child.get("class") or []):
            continue
        text = _text(child)
        if not text:
            continue
        for chunk in _PARAGRAPH_BREAK.split(text):
            chunk = clean_text(chunk)
            if chunk:
                parts.append(chunk)
    return parts


def parse_availability(doc: Document) -> str:
    soup = make_soup(doc)
    boxes = soup.select(".course__overview-box")
    return clean_text("\n".join(box.get_text() for box in boxes))


def parse_credit_points(doc: Document) -> Optional[Number]:
    """
    Credit points from <meta name="points">, or None if missing/invalid.
    """
    soup = make_soup(doc)
    meta = soup.find("meta", attrs={"name": "points"})
    content = meta.get("content") if meta is not None else None
    if not content:
        return None
    try:
        value = float(str(content).strip())
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return int(value) if value.is_integer() else value


# ---------------------------------------------------------------------------
# Assessment page
# ---------------------------------------------------------------------------


def _column_label(headers: List[str], index: int) -> str:
    if index < len(headers) and headers[index]:
        return headers[index]
    return f"Column {index + 1}"


def _parse_table(table: Tag) -> Optional[AssessmentTable]:
    all_rows = table.find_all("tr")
    thead = table.find("thead")

    headers: List[str] = []
    header_row: Optional[Tag] = None
    if thead is not None:
        headers = [_text(th) for th in thead.find_all("th")]
    if not headers and all_rows:
        # No <thead>: the first row doubles as header
        header_row = all_rows[0]
        headers = [_text(cell) for cell in header_row.find_all(["th", "td"])]

    rows: List[Dict[str, str]] = []
    width = len(headers)
    for tr in all_rows:
        if tr is header_row:
            continue
        if thead is not None and tr.find_parent("thead") is thead:
            continue
        cells = tr.find_all("td")
        if not cells:
            continue
        rows.append({_column_label(headers, i): _text(cell) for i, cell in enumerate(cells)})
        width = max(width, len(cells))

    if not rows:
        return None

    return AssessmentTable(columns=[_column_label(headers, i) for i in range(width)], rows=rows)


def parse_assessment_tables(doc: Document, period_label: str = "Semester 1") -> List[AssessmentTable]:
    """
    Tables of the section headed by the first <h3>/<h4> mentioning `period_label`.

    The section ends at the next heading of the same or a higher level, so
    subheadings inside it are walked through. Tables without body rows are dropped.
    """
    soup = make_soup(doc)
    heading = find_heading(soup, ["h3", "h4"], period_label)
    if heading is None:
        return []

    tables: List[AssessmentTable] = []
    for node in iter_section(heading, max_level=heading_level(heading) or 4):
        candidates = [node] if node.name == "table" else node.find_all("table")
        for table in candidates:
            parsed = _parse_table(table)
            if parsed is not None:
                tables.append(parsed)
    return tables


def parse_semester_emails(doc: Document, period_label: str = "Semester 1") -> List[str]:
    """
    Instructor emails listed under the first <h5> mentioning `period_label`.

    The section ends at the next <h1>..<h5>.
    """
    soup = make_soup(doc)
    heading = find_heading(soup, ["h5"], period_label)
    if heading is None:
        return []

    text = "\n".join(node.get_text(" ") for node in iter_section(heading, max_level=5))
    return extract_emails(text)
