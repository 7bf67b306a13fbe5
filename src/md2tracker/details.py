"""Collapsible ``<details>`` blocks: scanning, span tree, and text renderers."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

LOG = logging.getLogger("md2tracker")

SPAN_TEXT = "text"
SPAN_BLOCK = "block"

DETAILS_TAG_RE = re.compile(r"<(/?)details\b[^>]*>", re.IGNORECASE)
SUMMARY_RE = re.compile(r"\s*<summary\b[^>]*>(.*?)</summary\s*>", re.IGNORECASE | re.DOTALL)
BLANK_LINE_RUN_RE = re.compile(r"\r?\n(?:[ \t]*\r?\n){2,}")
CODE_SAMPLE_TITLE_RE = re.compile(r"\d+\s+lines?\b", re.IGNORECASE)
TILDE_FENCE_RE = re.compile(r"^[ \t]*(~{3,})", re.MULTILINE)

MIN_FENCE_LENGTH = 3

TITLE_ENTITIES = (
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&amp;", "&"),
)


class MalformedDetailsError(ValueError):
    """Raised when ``<details>`` markup cannot be matched unambiguously."""


@dataclass
class DetailsRegion:
    start: int
    end: int
    body_start: int
    body_end: int
    title: str


@dataclass
class Span:
    kind: str
    title: str = ""
    children: List["Span"] = field(default_factory=list)
    raw_content: str = ""
    head: str = ""
    tail: str = ""

    @property
    def is_block(self) -> bool:
        return self.kind == SPAN_BLOCK

    @property
    def source(self) -> str:
        return f"{self.head}{self.raw_content}{self.tail}"


def decode_title_entities(text: str) -> str:
    for entity, literal in TITLE_ENTITIES:
        text = text.replace(entity, literal)
    return text


def normalize_block_body(text: str) -> str:
    """Trim outer whitespace and collapse runs of blank lines to a single one."""
    if not text:
        return ""
    return BLANK_LINE_RUN_RE.sub(_blank_line_pair, text.strip())


def _blank_line_pair(match: re.Match) -> str:
    return "\r\n\r\n" if match.group(0).startswith("\r") else "\n\n"


def find_details_regions(text: str) -> List[DetailsRegion]:
    """Return the outermost ``<details>`` regions of ``text`` in order.

    Nesting is resolved with a depth counter, so a region only closes on the
    ``</details>`` that balances its own opening tag. Raises
    :class:`MalformedDetailsError` for unbalanced tags or a region whose
    interior does not start with a ``<summary>`` element.
    """
    regions: List[DetailsRegion] = []
    depth = 0
    open_start = 0
    open_end = 0

    for match in DETAILS_TAG_RE.finditer(text):
        closing = bool(match.group(1))
        if not closing:
            if depth == 0:
                open_start, open_end = match.start(), match.end()
            depth += 1
            continue
        if depth == 0:
            raise MalformedDetailsError(f"unmatched </details> at offset {match.start()}")
        depth -= 1
        if depth == 0:
            title, body_start = _read_summary(text, open_end, match.start())
            regions.append(
                DetailsRegion(
                    start=open_start,
                    end=match.end(),
                    body_start=body_start,
                    body_end=match.start(),
                    title=title,
                )
            )

    if depth != 0:
        raise MalformedDetailsError(f"unclosed <details> at offset {open_start}")
    return regions


def _read_summary(text: str, pos: int, limit: int) -> Tuple[str, int]:
    match = SUMMARY_RE.match(text, pos, limit)
    if match is None:
        raise MalformedDetailsError(f"<details> at offset {pos} has no leading <summary>")
    return decode_title_entities(match.group(1).strip()), match.end()


def parse_spans(text: str) -> List[Span]:
    """Split ``text`` into text and block spans, recursing into block bodies."""
    spans: List[Span] = []
    cursor = 0
    for region in find_details_regions(text):
        if region.start > cursor:
            spans.append(Span(kind=SPAN_TEXT, raw_content=text[cursor : region.start]))
        body = text[region.body_start : region.body_end]
        spans.append(
            Span(
                kind=SPAN_BLOCK,
                title=region.title,
                children=parse_spans(body),
                raw_content=body,
                head=text[region.start : region.body_start],
                tail=text[region.body_end : region.end],
            )
        )
        cursor = region.end
    if cursor < len(text):
        spans.append(Span(kind=SPAN_TEXT, raw_content=text[cursor:]))
    return spans


def count_blocks(spans: List[Span]) -> int:
    return sum(1 + count_blocks(span.children) for span in spans if span.is_block)


def _try_parse_spans(text: str) -> Optional[List[Span]]:
    try:
        return parse_spans(text)
    except MalformedDetailsError as exc:
        LOG.debug("Leaving text unchanged, malformed details markup: %s", exc)
        return None


def has_details_blocks(text: Optional[str]) -> bool:
    if not text:
        return False
    spans = _try_parse_spans(text)
    return bool(spans) and any(span.is_block for span in spans)


class SpanRenderer:
    """Renders a span tree back to text, delegating block syntax to subclasses.

    With ``own_lines`` set, a block that starts or ends mid-line is moved onto
    lines of its own so its fences stay at the start of a line.
    """

    own_lines = False

    def render(self, spans: List[Span]) -> str:
        parts: List[str] = []
        for idx, span in enumerate(spans):
            if not span.is_block:
                parts.append(span.raw_content)
                continue
            body = normalize_block_body(self.render(span.children))
            block = self.render_block(span, body)
            if self.own_lines:
                if parts and parts[-1] and not parts[-1].endswith("\n"):
                    block = f"\n{block}"
                following = spans[idx + 1] if idx + 1 < len(spans) else None
                if following is not None and not following.is_block and not following.raw_content.startswith("\n"):
                    if not following.raw_content.startswith("\r\n"):
                        block = f"{block}\n"
            parts.append(block)
        return "".join(parts)

    def render_block(self, span: Span, body: str) -> str:
        raise NotImplementedError

    def convert(self, text: Optional[str]) -> Optional[str]:
        if not text:
            return text
        spans = _try_parse_spans(text)
        if not spans or not any(span.is_block for span in spans):
            return text
        LOG.debug("%s: %d collapsible block(s)", type(self).__name__, count_blocks(spans))
        return self.render(spans)


def longest_tilde_fence(spans: List[Span]) -> int:
    """Longest line-leading ``~`` run written in the text of ``spans``, nested blocks included."""
    longest = 0
    for span in spans:
        if span.is_block:
            longest = max(longest, longest_tilde_fence(span.children))
            continue
        for match in TILDE_FENCE_RE.finditer(span.raw_content):
            longest = max(longest, len(match.group(1)))
    return longest


class FencedTitleRenderer(SpanRenderer):
    """``~~~expand title="..."`` fences, parsed later by the ADF builder.

    The fence outgrows any tilde code fence found in the block body.
    """

    own_lines = True

    def render_block(self, span: Span, body: str) -> str:
        longest = longest_tilde_fence(span.children)
        fence = "~" * (longest + 1 if longest >= MIN_FENCE_LENGTH else MIN_FENCE_LENGTH)
        escaped = span.title.replace("\\", "\\\\").replace('"', '\\"')
        if body:
            return f'{fence}expand title="{escaped}"\n{body}\n{fence}'
        return f'{fence}expand title="{escaped}"\n{fence}'


class PlusFenceRenderer(SpanRenderer):
    """``+++ Title`` / ``+++`` fences of the plain-text tracker dialect."""

    def render_block(self, span: Span, body: str) -> str:
        if body:
            return f"+++ {span.title}\n\n{body}\n\n+++"
        return f"+++ {span.title}\n\n+++"


def convert_details_to_expand_syntax(text: Optional[str]) -> Optional[str]:
    return FencedTitleRenderer().convert(text)


def convert_details_to_plus_fence(text: Optional[str]) -> Optional[str]:
    return PlusFenceRenderer().convert(text)


def is_code_sample_title(title: str) -> bool:
    return bool(CODE_SAMPLE_TITLE_RE.search(title or ""))


def _unwrap_code_samples(spans: List[Span]) -> str:
    parts: List[str] = []
    for span in spans:
        if not span.is_block:
            parts.append(span.raw_content)
        elif is_code_sample_title(span.title):
            parts.append(normalize_block_body(span.raw_content))
        else:
            parts.append(span.head + _unwrap_code_samples(span.children) + span.tail)
    return "".join(parts)


def remove_code_sample_wrappers(text: Optional[str]) -> Optional[str]:
    """Drop the ``<details>`` wrapper around "N lines" code samples, keeping their body."""
    if not text:
        return text
    spans = _try_parse_spans(text)
    if not spans:
        return text
    return _unwrap_code_samples(spans)
