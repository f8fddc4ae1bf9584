"""Inline markup for note content.

Notes use a small markdown-like subset. ``format_text`` turns it into a list
of ``Block`` segments, each carrying ``Span`` children, and leaves the
presentation to whoever renders them.

Block rules, one line at a time:

- ``#``/``##``/``###`` + whitespace: heading of level 1-3
- ``-`` or ``*`` + whitespace: bullet item
- digits + ``.`` + whitespace: numbered item
- blank line: explicit line break
- anything else: paragraph

Inline rules are ``**bold**``, ``*italic*`` and ``__underline__``. The
earliest match in the line wins; at the same position bold is tried before
italic, so a double asterisk is never read as two italics. An italic may
wrap a bold. Text inside a match is parsed again with every rule, which is
how ``*a **b** c*`` and ``__x *y* z__`` nest. Unbalanced markers stay
literal.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

HEADING_PATTERN = re.compile(r"^(#{1,3})\s+(.*)$")
BULLET_PATTERN = re.compile(r"^[-*]\s+(.*)$")
NUMBERED_PATTERN = re.compile(r"^(\d+)\.\s+(.*)$")

INLINE_RULES: Tuple[Tuple[str, "re.Pattern[str]"], ...] = (
    ("bold", re.compile(r"\*\*(.+?)\*\*")),
    # A lone ``*`` opens and closes; ``**...**`` inside is skipped whole.
    ("italic", re.compile(r"(?<!\*)\*(?!\*)((?:\*\*.+?\*\*|[^*])+?)\*(?!\*)")),
    ("underline", re.compile(r"__(.+?)__")),
)


@dataclass
class Span:
    kind: str
    text: str
    children: List["Span"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "text": self.text,
            "children": [child.to_dict() for child in self.children],
        }


@dataclass
class Block:
    kind: str
    text: str = ""
    level: Optional[int] = None
    number: Optional[int] = None
    spans: List[Span] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "text": self.text,
            "level": self.level,
            "number": self.number,
            "spans": [span.to_dict() for span in self.spans],
        }


def _next_match(
    text: str,
    pos: int,
    rules: Sequence[Tuple[str, "re.Pattern[str]"]],
) -> Optional[Tuple[str, "re.Match[str]"]]:
    best: Optional[Tuple[str, "re.Match[str]"]] = None
    for kind, pattern in rules:
        match = pattern.search(text, pos)
        if match and (best is None or match.start() < best[1].start()):
            best = (kind, match)
    return best


def parse_inline(
    text: str,
    rules: Sequence[Tuple[str, "re.Pattern[str]"]] = INLINE_RULES,
) -> List[Span]:
    if not text:
        return []
    spans: List[Span] = []
    pos = 0
    while pos < len(text):
        found = _next_match(text, pos, rules)
        if found is None:
            break
        kind, match = found
        if match.start() > pos:
            spans.append(Span("text", text[pos : match.start()]))
        inner = match.group(1)
        spans.append(Span(kind, inner, parse_inline(inner, rules)))
        pos = match.end()
    if pos < len(text):
        spans.append(Span("text", text[pos:]))
    return spans


def _parse_line(line: str) -> Block:
    if not line.strip():
        return Block("line_break")

    match = HEADING_PATTERN.match(line)
    if match:
        text = match.group(2).strip()
        return Block("heading", text, level=len(match.group(1)), spans=parse_inline(text))

    match = BULLET_PATTERN.match(line)
    if match:
        text = match.group(1).strip()
        return Block("bullet_item", text, spans=parse_inline(text))

    match = NUMBERED_PATTERN.match(line)
    if match:
        text = match.group(2).strip()
        return Block("numbered_item", text, number=int(match.group(1)), spans=parse_inline(text))

    text = line.strip()
    return Block("paragraph", text, spans=parse_inline(text))


def format_text(text: Optional[str]) -> List[Block]:
    if not text:
        return []
    return [_parse_line(line) for line in text.splitlines()]


def format_to_dicts(text: Optional[str]) -> List[Dict[str, Any]]:
    return [block.to_dict() for block in format_text(text)]
