import pytest

import md2tracker.reader as reader
from md2tracker.core import markdown_to_adf
from md2tracker.reader import adf_to_markdown


def _doc(*content):
    return {"type": "doc", "version": 1, "content": list(content)}


def _paragraph(*content):
    return {"type": "paragraph", "content": list(content)}


def _text(text, *marks):
    node = {"type": "text", "text": text}
    if marks:
        node["marks"] = list(marks)
    return node


class _FakeNode:
    def __init__(self, markdown):
        self.markdown = markdown

    def to_markdown(self, ignore_error=False):
        return self.markdown


def _fake_parser(monkeypatch, render):
    calls = []

    def parse_node(doc):
        calls.append(doc)
        return _FakeNode(render(doc))

    monkeypatch.setattr(reader, "parse_node", parse_node)
    return calls


def _plain_texts(doc):
    texts = []
    for node in doc.get("content") or []:
        if node.get("type") == "text":
            texts.append(node["text"])
        texts.extend(_plain_texts(node))
    return texts


@pytest.mark.parametrize("value", [None, "", {}, [], 42])
def test_adf_to_markdown_handles_empty_and_foreign_values(value):
    assert adf_to_markdown(value) == ""


def test_adf_to_markdown_passes_plain_strings_through():
    assert adf_to_markdown("already markdown") == "already markdown"


def test_regular_blocks_are_rendered_by_the_document_parser():
    adf = _doc(
        {"type": "heading", "attrs": {"level": 2}, "content": [_text("Title")]},
        _paragraph(_text("Body with "), _text("bold", {"type": "strong"})),
    )

    result = adf_to_markdown(adf)

    assert "Title" in result
    assert "**bold**" in result
    assert result.index("Title") < result.index("bold")


def test_expand_nodes_become_details_blocks(monkeypatch):
    calls = _fake_parser(monkeypatch, lambda doc: "\n".join(_plain_texts(doc)) + "\n")
    adf = _doc(
        _paragraph(_text("Before")),
        {
            "type": "expand",
            "attrs": {"title": "More"},
            "content": [
                _paragraph(_text("Hidden")),
                {"type": "nestedExpand", "attrs": {"title": "Inner"}, "content": [_paragraph(_text("Deep"))]},
            ],
        },
        {"type": "expand", "attrs": {"title": "Empty"}, "content": []},
        _paragraph(_text("After")),
    )

    result = adf_to_markdown(adf)

    assert result == (
        "Before\n\n"
        "<details>\n<summary>More</summary>\n\n"
        "Hidden\n\n"
        "<details>\n<summary>Inner</summary>\n\nDeep\n\n</details>\n\n"
        "</details>\n\n"
        "<details>\n<summary>Empty</summary>\n</details>\n\n"
        "After"
    )
    for doc in calls:
        assert doc["type"] == "doc"
        assert all(node["type"] not in ("expand", "nestedExpand") for node in doc["content"])


def test_unsupported_node_falls_back_to_its_children(monkeypatch):
    def render(doc):
        if any(node["type"] == "customWidget" for node in doc["content"]):
            raise ValueError("unknown node type")
        return "\n".join(_plain_texts(doc))

    _fake_parser(monkeypatch, render)
    adf = _doc(_paragraph(_text("first")), {"type": "customWidget", "content": [_paragraph(_text("inside"))]})

    assert adf_to_markdown(adf) == "first\n\ninside"


def test_code_block_trailing_blank_line_is_removed(monkeypatch):
    _fake_parser(monkeypatch, lambda doc: "\n```python\nprint(1)\n\n```\n")
    adf = _doc({"type": "codeBlock", "attrs": {"language": "python"}, "content": [_text("print(1)")]})

    assert adf_to_markdown(adf) == "```python\nprint(1)\n```"


def test_spaces_move_out_of_strong_and_em_text():
    paragraph = _paragraph(
        _text("Ship "),
        _text("release ", {"type": "strong"}),
        _text(" now", {"type": "em"}),
        _text(" code ", {"type": "code"}),
    )

    fixed = reader.move_spaces_out_of_marks(paragraph)

    assert fixed["content"] == [
        _text("Ship "),
        _text("release", {"type": "strong"}),
        _text(" "),
        _text(" "),
        _text("now", {"type": "em"}),
        _text(" code ", {"type": "code"}),
    ]
    assert paragraph["content"][1]["text"] == "release "


def test_details_survive_a_round_trip():
    text = "<details>\n<summary>Notes</summary>\n\nBody text\n\n</details>"

    result = adf_to_markdown(markdown_to_adf(text))

    assert result.startswith("<details>\n<summary>Notes</summary>\n\n")
    assert result.endswith("\n\n</details>")
    doc = markdown_to_adf(result)
    assert doc["content"][0]["type"] == "expand"
    assert doc["content"][0]["attrs"]["title"] == "Notes"
    assert _plain_texts(doc) == ["Body text"]
