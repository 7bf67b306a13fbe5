"""Render ADF documents fetched from the tracker back into Markdown.

Regular blocks go through ``atlas_doc_parser``. ``expand`` and
``nestedExpand`` nodes are rendered here as ``<details>`` blocks so that they
read back through :func:`md2tracker.markdown_to_adf` unchanged.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List

from atlas_doc_parser.api import parse_node

LOG = logging.getLogger("md2tracker")

EXPAND_TYPES = ("expand", "nestedExpand")
SPACED_MARKS = ("strong", "em")

CODE_BLOCK_TAIL_RE = re.compile(r"(```\w*\n.*?)\n\n```", re.DOTALL)


def _children(node: Dict[str, Any]) -> List[Dict[str, Any]]:
    content = node.get("content")
    if not isinstance(content, list):
        return []
    return [child for child in content if isinstance(child, dict)]


def _mark_types(node: Dict[str, Any]) -> List[Any]:
    return [mark.get("type") for mark in node.get("marks") or [] if isinstance(mark, dict)]


def move_spaces_out_of_marks(node: Dict[str, Any]) -> Dict[str, Any]:
    """Split outer spaces off ``strong``/``em`` text so they render outside the delimiters."""
    if "content" not in node:
        return node
    fixed: List[Dict[str, Any]] = []
    for child in _children(node):
        child = move_spaces_out_of_marks(child)
        text = child.get("text")
        spaced = child.get("type") == "text" and isinstance(text, str) and text.strip() and text.strip() != text
        if not spaced or not any(mark in SPACED_MARKS for mark in _mark_types(child)):
            fixed.append(child)
            continue
        leading = text[: len(text) - len(text.lstrip())]
        trailing = text[len(text.rstrip()) :]
        if leading:
            fixed.append({"type": "text", "text": leading})
        fixed.append(dict(child, text=text.strip()))
        if trailing:
            fixed.append({"type": "text", "text": trailing})
    return dict(node, content=fixed)


def _render_with_parser(nodes: List[Dict[str, Any]]) -> str:
    if not nodes:
        return ""
    doc = move_spaces_out_of_marks({"type": "doc", "version": 1, "content": nodes})
    try:
        markdown = parse_node(doc).to_markdown(ignore_error=True)
    except Exception as exc:
        if len(nodes) > 1:
            return "\n\n".join(part for part in (_render_with_parser([node]) for node in nodes) if part)
        LOG.debug("Rendering children of unsupported ADF node %s: %s", nodes[0].get("type"), exc)
        return render_blocks(_children(nodes[0]))
    markdown = CODE_BLOCK_TAIL_RE.sub(r"\1\n```", markdown)
    return markdown.strip("\n")


def _render_expand(node: Dict[str, Any]) -> str:
    title = (node.get("attrs") or {}).get("title") or ""
    body = render_blocks(_children(node))
    if body:
        return f"<details>\n<summary>{title}</summary>\n\n{body}\n\n</details>"
    return f"<details>\n<summary>{title}</summary>\n</details>"


def render_blocks(nodes: List[Dict[str, Any]]) -> str:
    parts: List[str] = []
    run: List[Dict[str, Any]] = []
    for node in nodes:
        if node.get("type") not in EXPAND_TYPES:
            run.append(node)
            continue
        parts.append(_render_with_parser(run))
        run = []
        parts.append(_render_expand(node))
    parts.append(_render_with_parser(run))
    return "\n\n".join(part for part in parts if part)


def adf_to_markdown(adf: Any) -> str:
    """Convert an ADF document (or an already plain string) into Markdown."""
    if not adf:
        return ""
    if isinstance(adf, str):
        return adf
    if not isinstance(adf, dict):
        return ""
    if adf.get("type") == "doc":
        return render_blocks(_children(adf))
    return render_blocks([adf])
