"""Section parsing for the six-part coaching summary.

The summary is markdown with six bold headings in a fixed order. Parsing
scans for the heading literals and slices the text between consecutive
headings; nothing inside a section is parsed again, so transcript quotes
such as ``**Coach:**`` stay untouched.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime

from acf_coach.schemas import ActionItemDraft
from acf_coach.utils.text import collapse_whitespace

logger = logging.getLogger(__name__)

EXECUTIVE_SUMMARY = "Executive Summary"
KEY_INSIGHTS = "Key Insights"
GOAL_STATEMENT = "Goal Statement"
ACTION_PLAN = "Action Plan"
SUCCESS_METRICS = "Success Metrics"
SUPPORT_ACCOUNTABILITY = "Support & Accountability"

SECTION_NAMES: tuple[str, ...] = (
    EXECUTIVE_SUMMARY,
    KEY_INSIGHTS,
    GOAL_STATEMENT,
    ACTION_PLAN,
    SUCCESS_METRICS,
    SUPPORT_ACCOUNTABILITY,
)

DEFAULT_THEME = "Professional Development"

# Characters allowed between a line start and a heading ("## **Goal Statement**")
_HEADING_PREFIX_CHARS = " \t#>"


def heading(name: str) -> str:
    """The bold heading literal for a section name."""
    return f"**{name}**"


SummarySections = dict[str, str]


@dataclass
class _LocatedHeading:
    name: str
    start: int
    end: int
    # Where the previous section's content stops ("## " prefixes excluded)
    boundary: int


def _line_start(text: str, index: int) -> int:
    return text.rfind("\n", 0, index) + 1


def _at_line_start(text: str, index: int) -> bool:
    return all(ch in _HEADING_PREFIX_CHARS for ch in text[_line_start(text, index):index])


def _find_heading(lowered: str, literal: str, start: int) -> int:
    """First occurrence of literal at or after start, preferring line-start matches."""
    first_any = -1
    index = lowered.find(literal, start)
    while index != -1:
        if _at_line_start(lowered, index):
            return index
        if first_any == -1:
            first_any = index
        index = lowered.find(literal, index + 1)
    return first_any


def _locate_headings(text: str) -> list[_LocatedHeading]:
    lowered = text.lower()
    located: list[_LocatedHeading] = []
    cursor = 0
    taken: set[int] = set()

    for name in SECTION_NAMES:
        literal = heading(name).lower()
        # Document order first; fall back to anywhere for out-of-order output
        index = _find_heading(lowered, literal, cursor)
        if index == -1:
            index = _find_heading(lowered, literal, 0)
        if index == -1 or index in taken:
            continue
        taken.add(index)
        boundary = _line_start(lowered, index) if _at_line_start(lowered, index) else index
        located.append(
            _LocatedHeading(name=name, start=index, end=index + len(literal), boundary=boundary)
        )
        cursor = index + len(literal)

    located.sort(key=lambda h: h.start)
    return located


def parse_summary(text: str | None) -> SummarySections:
    """
    Split a summary into its six named sections.

    Every section name is present in the result; sections whose heading is
    missing map to an empty string. Content is trimmed and a colon directly
    after the heading ("**Goal Statement**: ...") is dropped.
    """
    sections: SummarySections = {name: "" for name in SECTION_NAMES}
    if not text:
        return sections

    located = _locate_headings(text)
    for position, found in enumerate(located):
        content_end = located[position + 1].boundary if position + 1 < len(located) else len(text)
        content = text[found.end:content_end]
        sections[found.name] = content.lstrip(": \t\r\n").strip()

    return sections


def render_sections(sections: SummarySections) -> str:
    """Render sections back into a summary document with all six headings."""
    blocks = []
    for name in SECTION_NAMES:
        content = sections.get(name, "")
        blocks.append(f"{heading(name)}\n{content}" if content else heading(name))
    return "\n\n".join(blocks)


def extract_coaching_theme(sections: SummarySections) -> str:
    """Derive a short label for the session's action items."""
    goal = sections.get(GOAL_STATEMENT, "")
    if goal:
        match = re.search(r"to become.*?(?=\.|,|within)", goal, re.IGNORECASE)
        if match:
            theme = re.sub(r"^to become\s*", "", match.group(0), flags=re.IGNORECASE).strip()
            if theme:
                return theme[:255]

    executive = sections.get(EXECUTIVE_SUMMARY, "")
    if executive:
        match = re.search(r'"([^"]+)"', executive)
        if match:
            return match.group(1).strip()[:255]
        match = re.search(r"(?:session|coaching)\s+focused on\s+([^.]+)", executive, re.IGNORECASE)
        if match:
            return match.group(1).strip()[:255]

    return DEFAULT_THEME


# Numbered Action Plan lists ("1. **Title:** description (Deadline: ...)")

_NUMBERED_LINE = re.compile(r"^(\d+)[.)]\s*(.+)")
_BOLD_TITLE = re.compile(r"^\*\*([^*]+)\*\*:?\s*(.*)")
_PLAIN_TITLE = re.compile(r"^([^:]+):\s*(.*)")
_DEADLINE = re.compile(r"\(Deadline:\s*([^)]+)\)|Deadline:\s*([^\n.]+)", re.IGNORECASE)
_DEADLINE_STRIP = re.compile(r"\(Deadline:[^)]+\)|\**Deadline:[^\n.]+", re.IGNORECASE)

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%A, %B %d, %Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%m/%d/%Y",
)


def parse_due_date(value: str | None) -> date | None:
    """Parse the date formats the summary and the model tend to produce."""
    if not value:
        return None
    cleaned = value.strip().strip("*").strip()
    # ISO timestamps: keep the date part
    if re.match(r"^\d{4}-\d{2}-\d{2}", cleaned):
        cleaned = cleaned[:10]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
    return None


def _clean_description(text: str) -> str:
    text = _DEADLINE_STRIP.sub("", text)
    text = text.replace("**", "")
    return collapse_whitespace(text).rstrip(" .").strip()


def _split_title(content: str) -> tuple[str, str]:
    bold = _BOLD_TITLE.match(content)
    if bold:
        return bold.group(1).strip().rstrip(":").strip(), bold.group(2).strip()
    plain = _PLAIN_TITLE.match(content)
    if plain:
        return plain.group(1).strip(), plain.group(2).strip()
    words = content.split(" ")
    return " ".join(words[:5]), content


def parse_numbered_actions(section_text: str) -> list[ActionItemDraft]:
    """
    Parse a numbered Action Plan list into drafts.

    Lines that do not start a new number continue the previous item's
    description. A ``Deadline:`` clause is removed from the description and
    becomes the due date when it is a recognizable date.
    """
    drafts: list[ActionItemDraft] = []
    if not section_text or not section_text.strip():
        return drafts

    current: dict | None = None

    def flush() -> None:
        if current and current["title"]:
            drafts.append(
                ActionItemDraft(
                    title=current["title"],
                    description=_clean_description(current["description"]),
                    due_date=parse_due_date(current["deadline"]),
                )
            )

    for raw_line in section_text.split("\n"):
        line = raw_line.strip()
        numbered = _NUMBERED_LINE.match(line)
        if numbered:
            flush()
            title, description = _split_title(numbered.group(2))
            current = {"title": title, "description": description, "deadline": None}
        elif current is not None and line:
            current["description"] = f"{current['description']} {line}"
        else:
            continue

        if current is not None and not current["deadline"]:
            deadline = _DEADLINE.search(current["description"])
            if deadline:
                current["deadline"] = (deadline.group(1) or deadline.group(2)).strip()

    flush()
    logger.debug(f"[SectionParser] Parsed {len(drafts)} numbered actions")
    return drafts
