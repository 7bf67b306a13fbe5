"""Markdown to Atlassian Document Format (ADF) tree builder and sanitizers."""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from bs4 import BeautifulSoup, Comment
from markdown_it import MarkdownIt
from markdown_it.rules_block import StateBlock
from markdown_it.tree import SyntaxTreeNode
from markdownify import markdownify as md_convert
from mdit_py_plugins.tasklists import tasklists_plugin

LOG = logging.getLogger("md2tracker")

ADF_VERSION = 1

BLOCK_TYPES = frozenset(
    {
        "doc",
        "paragraph",
        "heading",
        "bulletList",
        "orderedList",
        "listItem",
        "taskList",
        "taskItem",
        "table",
        "tableRow",
        "tableHeader",
        "tableCell",
        "codeBlock",
        "blockquote",
        "rule",
        "expand",
    }
)
INLINE_TYPES = frozenset({"text", "hardBreak"})
MARK_TYPES = frozenset({"strong", "em", "code", "link", "strike", "underline"})

TASK_DONE = "DONE"
TASK_TODO = "TODO"

TASK_LIST_CLASS = "contains-task-list"
TASK_ITEM_CLASS = "task-list-item"
CHECKBOX_CLASS = "task-list-item-checkbox"
CHECKED_BOX = "[x]"
UNCHECKED_BOX = "[ ]"

EXPAND_OPEN_RE = re.compile(r'^(~{3,})expand(?:[ \t]+title="((?:[^"\\]|\\.)*)")?[ \t]*$')
TILDE_CLOSE_RE = re.compile(r"^(~{3,})[ \t]*$")
CODE_FENCE_RE = re.compile(r"^(`{3,}|~{3,})")
TITLE_ESCAPE_RE = re.compile(r"\\(.)")
HTML_TAG_RE = re.compile(r"^<\s*(/)?\s*([a-zA-Z][a-zA-Z0-9-]*)")

HTML_MARK_TAGS = {
    "b": "strong",
    "strong": "strong",
    "i": "em",
    "em": "em",
    "code": "code",
    "s": "strike",
    "del": "strike",
    "strike": "strike",
    "u": "underline",
}


@dataclass
class Mark:
    type: str
    attrs: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        if self.type not in MARK_TYPES:
            raise ValueError(f"Unsupported mark type: {self.type}")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type}
        if self.attrs:
            data["attrs"] = dict(self.attrs)
        return data


@dataclass
class DocNode:
    type: str
    content: Optional[List["DocNode"]] = None
    text: Optional[str] = None
    marks: List[Mark] = field(default_factory=list)
    attrs: Optional[Dict[str, Any]] = None
    meta: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.type not in BLOCK_TYPES and self.type not in INLINE_TYPES:
            raise ValueError(f"Unsupported node type: {self.type}")

    @property
    def is_block(self) -> bool:
        return self.type in BLOCK_TYPES

    @property
    def is_inline(self) -> bool:
        return self.type in INLINE_TYPES

    @property
    def children(self) -> List["DocNode"]:
        return self.content or []

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type}
        if self.type == "doc":
            data["version"] = ADF_VERSION
        if self.attrs is not None:
            data["attrs"] = dict(self.attrs)
        if self.content is not None:
            data["content"] = [child.to_dict() for child in self.content]
        if self.text is not None:
            data["text"] = self.text
        if self.marks:
            data["marks"] = [mark.to_dict() for mark in self.marks]
        return data


def empty_document() -> Dict[str, Any]:
    return {"type": "doc", "version": ADF_VERSION, "content": []}


def text_node(text: str, marks: Optional[List[Mark]] = None) -> DocNode:
    return DocNode("text", text=text, marks=list(marks or []))


def _with_mark(marks: List[Mark], mark: Mark) -> List[Mark]:
    if any(existing.type == mark.type for existing in marks):
        return marks
    return marks + [mark]


def _line_text(state: StateBlock, line: int) -> str:
    return state.src[state.bMarks[line] + state.tShift[line] : state.eMarks[line]]


def _expand_rule(state: StateBlock, startLine: int, endLine: int, silent: bool) -> bool:
    if state.sCount[startLine] - state.blkIndent >= 4:
        return False
    match = EXPAND_OPEN_RE.match(_line_text(state, startLine))
    if match is None:
        return False
    if silent:
        return True

    # open expand fences, innermost last; a region closes on a bare line of its own fence
    fences = [match.group(1)]
    code_fence: Optional[str] = None
    closed = False
    nextLine = startLine
    while True:
        nextLine += 1
        if nextLine >= endLine:
            break
        line = _line_text(state, nextLine)
        if line and state.sCount[nextLine] < state.blkIndent:
            # a less indented non-empty line ends the enclosing container
            break
        if code_fence is not None:
            if line.startswith(code_fence) and not line.lstrip(code_fence[0]).strip():
                code_fence = None
            continue
        opened = EXPAND_OPEN_RE.match(line)
        if opened is not None:
            fences.append(opened.group(1))
            continue
        bare = TILDE_CLOSE_RE.match(line)
        if bare is not None and bare.group(1) == fences[-1]:
            fences.pop()
            if not fences:
                closed = True
                break
            continue
        fence = CODE_FENCE_RE.match(line)
        if fence is not None:
            code_fence = fence.group(1)

    title = TITLE_ESCAPE_RE.sub(r"\1", match.group(2) or "")

    old_parent = state.parentType
    old_line_max = state.lineMax
    state.parentType = "expand"  # type: ignore[assignment]
    state.lineMax = nextLine

    token = state.push("expand_open", "div", 1)
    token.block = True
    token.markup = match.group(1)
    token.map = [startLine, nextLine]
    token.meta = {"title": title}

    state.md.block.tokenize(state, startLine + 1, nextLine)

    token = state.push("expand_close", "div", -1)
    token.block = True
    token.markup = match.group(1)

    state.parentType = old_parent
    state.lineMax = old_line_max
    state.line = nextLine + (1 if closed else 0)
    return True


def expand_plugin(md: MarkdownIt) -> None:
    """Parse ``~~~expand title="..."`` ... ``~~~`` regions, nesting included.

    Fences may be longer than three tildes; the closing line repeats the
    opening fence exactly.
    """
    md.block.ruler.before(
        "fence",
        "expand",
        _expand_rule,
        {"alt": ["paragraph", "reference", "blockquote", "list"]},
    )


def create_markdown_parser() -> MarkdownIt:
    md = MarkdownIt("commonmark", {"html": True}).enable("table").enable("strikethrough")
    md.use(expand_plugin)
    md.use(tasklists_plugin)
    return md


class DocumentBuilder:
    """Builds an ADF node tree from Markdown plus the expand fence syntax."""

    def __init__(self) -> None:
        self._md = create_markdown_parser()

    def build(self, text: str) -> DocNode:
        return DocNode("doc", content=self._parse_blocks(text or "", allow_html=True))

    def _parse_blocks(self, text: str, allow_html: bool) -> List[DocNode]:
        root = SyntaxTreeNode(self._md.parse(text))
        return self._blocks(root.children, nested_in_item=False, allow_html=allow_html)

    def _blocks(self, nodes: List[SyntaxTreeNode], nested_in_item: bool, allow_html: bool) -> List[DocNode]:
        blocks: List[DocNode] = []
        for node in nodes:
            blocks.extend(self._block(node, nested_in_item, allow_html))
        return blocks

    def _block(self, node: SyntaxTreeNode, nested_in_item: bool, allow_html: bool) -> List[DocNode]:
        kind = node.type
        if kind == "paragraph":
            return [DocNode("paragraph", content=self._inline_content(node))]
        if kind == "heading":
            level = int(node.tag[1:]) if node.tag[1:].isdigit() else 1
            return [DocNode("heading", content=self._inline_content(node), attrs={"level": level})]
        if kind == "bullet_list":
            return [self._bullet_list(node, nested_in_item, allow_html)]
        if kind == "ordered_list":
            start = node.attrGet("start")
            items = [self._list_item(child, allow_html) for child in node.children]
            return [DocNode("orderedList", content=items, attrs={"order": int(start) if start else 1})]
        if kind == "blockquote":
            return [DocNode("blockquote", content=self._blocks(node.children, nested_in_item, allow_html))]
        if kind in ("fence", "code_block"):
            return [self._code_block(node)]
        if kind == "hr":
            return [DocNode("rule")]
        if kind == "table":
            return [self._table(node)]
        if kind == "expand":
            title = (node.meta or {}).get("title", "")
            content = self._blocks(node.children, nested_in_item, allow_html)
            return [DocNode("expand", content=content, attrs={"title": title})]
        if kind == "html_block":
            if allow_html:
                return self._html_block(node.content)
            literal = node.content.strip()
            return [DocNode("paragraph", content=[text_node(literal)] if literal else [])]
        if kind == "inline":
            return [DocNode("paragraph", content=self._inline_nodes(node))]
        LOG.debug("Skipping unsupported Markdown block: %s", kind)
        return []

    def _bullet_list(self, node: SyntaxTreeNode, nested_in_item: bool, allow_html: bool) -> DocNode:
        items = [self._list_item(child, allow_html) for child in node.children]
        bullet = DocNode("bulletList", content=items)
        if nested_in_item or not items or not _has_class(node, TASK_LIST_CLASS):
            return bullet
        if all(_is_plain_task_item(item) for item in items):
            bullet.meta["task_list"] = True
        return bullet

    def _list_item(self, node: SyntaxTreeNode, allow_html: bool) -> DocNode:
        item = DocNode("listItem", content=self._blocks(node.children, nested_in_item=True, allow_html=allow_html))
        if _has_class(node, TASK_ITEM_CLASS):
            item.meta["checked"] = _checkbox_checked(node)
        return item

    def _code_block(self, node: SyntaxTreeNode) -> DocNode:
        language = (node.info or "").strip().split(maxsplit=1)
        code = (node.content or "").rstrip("\n")
        attrs = {"language": language[0]} if language else None
        return DocNode("codeBlock", content=[text_node(code)] if code else [], attrs=attrs)

    def _table(self, node: SyntaxTreeNode) -> DocNode:
        rows: List[DocNode] = []
        for section in node.children:
            for row in section.children:
                cells: List[DocNode] = []
                for cell in row.children:
                    cell_type = "tableHeader" if cell.type == "th" else "tableCell"
                    cells.append(DocNode(cell_type, content=self._inline_content(cell)))
                rows.append(DocNode("tableRow", content=cells))
        return DocNode("table", content=rows, attrs={"isNumberColumnEnabled": False, "layout": "default"})

    def _html_block(self, html: str) -> List[DocNode]:
        soup = BeautifulSoup(html, "html.parser")
        for comment in soup.find_all(string=lambda value: isinstance(value, Comment)):
            comment.extract()
        for tag in soup.find_all(["script", "style"]):
            tag.decompose()
        if not soup.get_text(strip=True):
            return []
        md_text = md_convert(str(soup), heading_style="ATX", bullets="-")
        return self._parse_blocks(md_text.strip(), allow_html=False)

    def _inline_content(self, node: SyntaxTreeNode) -> List[DocNode]:
        for child in node.children:
            if child.type == "inline":
                return self._inline_nodes(child)
        return []

    def _inline_nodes(self, node: SyntaxTreeNode) -> List[DocNode]:
        out: List[DocNode] = []
        self._collect_inline(node.children, [], out)
        return _merge_text_nodes(out)

    def _collect_inline(self, nodes: List[SyntaxTreeNode], marks: List[Mark], out: List[DocNode]) -> None:
        html_marks: List[Mark] = []
        for node in nodes:
            active = marks
            for mark in html_marks:
                active = _with_mark(active, mark)
            kind = node.type
            if kind in ("text", "text_special"):
                out.append(text_node(node.content, active))
            elif kind == "code_inline":
                out.append(text_node(node.content, _with_mark(active, Mark("code"))))
            elif kind == "softbreak":
                out.append(text_node(" ", active))
            elif kind == "hardbreak":
                out.append(DocNode("hardBreak"))
            elif kind == "strong":
                self._collect_inline(node.children, _with_mark(active, Mark("strong")), out)
            elif kind == "em":
                self._collect_inline(node.children, _with_mark(active, Mark("em")), out)
            elif kind == "s":
                self._collect_inline(node.children, _with_mark(active, Mark("strike")), out)
            elif kind == "link":
                self._collect_inline(node.children, _with_mark(active, _link_mark(node)), out)
            elif kind == "image":
                alt = node.content or node.attrGet("src") or ""
                out.append(text_node(alt, _with_mark(active, Mark("link", {"href": node.attrGet("src") or ""}))))
            elif kind == "html_inline" and CHECKBOX_CLASS in node.content:
                # keep the marker as text; task items drop it later
                out.append(text_node(CHECKED_BOX if _is_checked_box(node) else UNCHECKED_BOX, active))
            elif kind == "html_inline":
                self._apply_html_tag(node.content, html_marks, out)
            elif node.children:
                self._collect_inline(node.children, active, out)
            elif node.content:
                out.append(text_node(node.content, active))

    def _apply_html_tag(self, tag: str, html_marks: List[Mark], out: List[DocNode]) -> None:
        match = HTML_TAG_RE.match(tag)
        if match is None:
            return
        name = match.group(2).lower()
        if name == "br":
            out.append(DocNode("hardBreak"))
            return
        mark_type = HTML_MARK_TAGS.get(name)
        if mark_type is None:
            return
        if not match.group(1):
            html_marks.append(Mark(mark_type))
            return
        for idx in range(len(html_marks) - 1, -1, -1):
            if html_marks[idx].type == mark_type:
                del html_marks[idx]
                break


def _link_mark(node: SyntaxTreeNode) -> Mark:
    attrs: Dict[str, Any] = {"href": node.attrGet("href") or ""}
    title = node.attrGet("title")
    if title:
        attrs["title"] = title
    return Mark("link", attrs)


def _merge_text_nodes(nodes: List[DocNode]) -> List[DocNode]:
    merged: List[DocNode] = []
    for node in nodes:
        if node.type == "text":
            if not node.text:
                continue
            previous = merged[-1] if merged else None
            if previous is not None and previous.type == "text" and previous.marks == node.marks:
                previous.text = f"{previous.text}{node.text}"
                continue
        merged.append(node)
    return merged


def _has_class(node: SyntaxTreeNode, name: str) -> bool:
    return name in str(node.attrGet("class") or "").split()


def _is_checked_box(node: SyntaxTreeNode) -> bool:
    return 'checked="checked"' in (node.content or "")


def _checkbox_checked(item: SyntaxTreeNode) -> bool:
    """Read the checkbox the tasklists plugin put in front of the item's first paragraph."""
    inline = item.children[0].children[0]
    return _is_checked_box(inline.children[0])


def _is_plain_task_item(item: DocNode) -> bool:
    return "checked" in item.meta and len(item.children) == 1 and item.children[0].type == "paragraph"


def resolve_code_mark_conflicts(node: DocNode) -> DocNode:
    """Code marks must stand alone: drop every other mark next to ``code``."""
    if node.type == "text" and len(node.marks) > 1 and any(mark.type == "code" for mark in node.marks):
        node.marks = [Mark("code")]
    for child in node.children:
        resolve_code_mark_conflicts(child)
    return node


def _new_local_id() -> str:
    return str(uuid.uuid4())


def _task_item(item: DocNode, id_factory: Callable[[], str]) -> DocNode:
    inline = list(item.children[0].children) if item.children else []
    if inline and inline[0].type == "text":
        first = inline[0]
        stripped = (first.text or "")[len(CHECKED_BOX) :].lstrip()
        if stripped:
            inline[0] = text_node(stripped, first.marks)
        else:
            inline = inline[1:]
    state = TASK_DONE if item.meta.get("checked") else TASK_TODO
    return DocNode("taskItem", content=inline, attrs={"localId": id_factory(), "state": state})


def convert_task_lists(node: DocNode, id_factory: Optional[Callable[[], str]] = None) -> DocNode:
    """Turn bullet lists flagged as checkbox lists into ``taskList`` nodes."""
    make_id = id_factory or _new_local_id
    if node.content is None:
        return node
    for idx, child in enumerate(node.content):
        convert_task_lists(child, make_id)
        if child.type == "bulletList" and child.meta.get("task_list"):
            items = [_task_item(item, make_id) for item in child.children]
            node.content[idx] = DocNode("taskList", content=items, attrs={"localId": make_id()})
    return node


def wrap_table_cell_content(node: DocNode) -> DocNode:
    """Table headers and cells only hold blocks: wrap inline runs in paragraphs."""
    for child in node.children:
        wrap_table_cell_content(child)
    if node.type not in ("tableHeader", "tableCell"):
        return node
    wrapped: List[DocNode] = []
    run: List[DocNode] = []
    for child in node.children:
        if child.is_inline:
            run.append(child)
            continue
        if run:
            wrapped.append(DocNode("paragraph", content=run))
            run = []
        wrapped.append(child)
    if run:
        wrapped.append(DocNode("paragraph", content=run))
    node.content = wrapped or [DocNode("paragraph", content=[])]
    return node


def sanitize_document(doc: DocNode, id_factory: Optional[Callable[[], str]] = None) -> DocNode:
    resolve_code_mark_conflicts(doc)
    convert_task_lists(doc, id_factory)
    wrap_table_cell_content(doc)
    return doc
