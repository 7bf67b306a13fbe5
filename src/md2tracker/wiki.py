"""Convert unambiguous Jira wiki markup to Markdown.

Only patterns that can never be valid Markdown are touched: ``hN.`` headings,
``{code}`` and ``{quote}`` blocks, and ``[text|http://url]`` links. ``*text*``
and ``_text_`` are left alone since they read as Markdown emphasis (or
snake_case). Backtick-fenced code blocks are never modified.
"""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

FENCED_CODE_RE = re.compile(r"^(`{3,})[^\n]*\n[\s\S]*?^\1[ \t]*$", re.MULTILINE)

WIKI_HEADING_RE = re.compile(r"^h([1-6])\.\s+(.*?)$", re.MULTILINE)
WIKI_CODE_LANG_RE = re.compile(r"\{code:([^}]+)\}\s*\n([\s\S]*?)\n?\s*\{code\}", re.IGNORECASE)
WIKI_CODE_RE = re.compile(r"\{code\}\s*\n([\s\S]*?)\n?\s*\{code\}", re.IGNORECASE)
WIKI_QUOTE_RE = re.compile(r"\{quote\}\s*\n([\s\S]*?)\n?\s*\{quote\}", re.IGNORECASE)
WIKI_LINK_RE = re.compile(r"\[([^\]|]+)\|(https?://[^\]]+)\]")

DETECT_PATTERNS = (
    re.compile(r"^h[1-6]\.\s+", re.MULTILINE),
    re.compile(r"\{code(?::[^}]*)?\}", re.IGNORECASE),
    re.compile(r"\{quote\}", re.IGNORECASE),
    re.compile(r"\[[^\]|]+\|https?://[^\]]+\]"),
)


def has_wiki_markup(text: Optional[str]) -> bool:
    if not text:
        return False
    return any(pattern.search(text) for pattern in DETECT_PATTERNS)


def _split_code_fences(text: str) -> List[Tuple[str, bool]]:
    segments: List[Tuple[str, bool]] = []
    cursor = 0
    for match in FENCED_CODE_RE.finditer(text):
        if match.start() > cursor:
            segments.append((text[cursor : match.start()], False))
        segments.append((match.group(0), True))
        cursor = match.end()
    if cursor < len(text):
        segments.append((text[cursor:], False))
    return segments


def _convert_segment(text: str) -> str:
    text = WIKI_HEADING_RE.sub(lambda m: f"{'#' * int(m.group(1))} {m.group(2)}", text)
    text = WIKI_CODE_LANG_RE.sub(lambda m: f"```{m.group(1).strip()}\n{m.group(2)}\n```", text)
    text = WIKI_CODE_RE.sub(lambda m: f"```\n{m.group(1)}\n```", text)
    text = WIKI_QUOTE_RE.sub(lambda m: "\n".join(f"> {line}" for line in m.group(1).split("\n")), text)
    text = WIKI_LINK_RE.sub(r"[\1](\2)", text)
    return text


def sanitize_wiki_markup(text: Optional[str]) -> str:
    if not text:
        return ""
    return "".join(segment if is_code else _convert_segment(segment) for segment, is_code in _split_code_fences(text))
