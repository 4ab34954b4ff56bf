"""Response classification for chat rendering.

A response string is matched against an ordered table of
(predicate, constructor) rules; the first rule that matches decides the
display mode. The order is the tie-break policy: a download anchor wins over
an HTML table in the same string, any HTML table wins over markdown, and so
on down to plain text.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, Union

_HTML_TABLE = re.compile(r"<table\b[\s\S]*?</table\s*>", re.IGNORECASE)
_ANCHOR_TAG = re.compile(r"<a\s[^>]*>", re.IGNORECASE)
_QUOTED_VALUE = re.compile(r"\"[^\"]*\"|'[^']*'")
_DOWNLOAD_ATTRIBUTE = re.compile(r"\sdownload(?=\s*=|\s|/?>)", re.IGNORECASE)
_TABLE_OPEN = re.compile(r"<table\b", re.IGNORECASE)
_MARKDOWN_RULE = re.compile(r"^\s*\|?\s*:?-+:?\s*(\|\s*:?-+:?\s*)*\|?\s*$")
_CODE_FENCE = re.compile(r"```(?:[\w+-]*\n)?([\s\S]*?)```")
_NUMBERED_ITEM = re.compile(r"^\s*\d+\.(?:\s+(.*))?$")


@dataclass(frozen=True)
class HtmlTable:
    html: str


@dataclass(frozen=True)
class DownloadLink:
    html: str


@dataclass(frozen=True)
class MarkdownTable:
    header: Tuple[str, ...]
    rows: Tuple[Tuple[str, ...], ...] = ()


@dataclass(frozen=True)
class CodeBlock:
    code: str


@dataclass(frozen=True)
class NumberedList:
    items: Tuple[str, ...]


@dataclass(frozen=True)
class PlainText:
    text: str


RenderDecision = Union[HtmlTable, DownloadLink, MarkdownTable, CodeBlock, NumberedList, PlainText]


def split_markdown_row(line: str) -> Tuple[str, ...]:
    return tuple(cell.strip() for cell in line.split("|") if cell.strip())


def _markdown_lines(text: str) -> Optional[List[str]]:
    """Header line, rule line and the contiguous piped lines after them.

    Lead-in prose before the header is allowed; the table ends at the first
    line without a pipe.
    """
    lines = [line for line in text.strip().splitlines() if line.strip()]
    for index in range(len(lines) - 1):
        header, rule = lines[index], lines[index + 1]
        if "|" in header and "|" in rule and _MARKDOWN_RULE.match(rule):
            table = [header, rule]
            for line in lines[index + 2:]:
                if "|" not in line:
                    break
                table.append(line)
            return table
    return None


def _numbered_items(text: str) -> Optional[Tuple[str, ...]]:
    items = []
    for line in text.splitlines():
        if not line.strip():
            continue
        match = _NUMBERED_ITEM.match(line)
        if match is None:
            return None
        items.append((match.group(1) or "").strip())
    return tuple(items) or None


def _has_download_anchor(text: str) -> bool:
    """True when some ``<a>`` tag carries a ``download`` attribute."""
    for match in _ANCHOR_TAG.finditer(text):
        # blank out attribute values so "/download/" in an href does not count
        tag = _QUOTED_VALUE.sub('""', match.group(0))
        if _DOWNLOAD_ATTRIBUTE.search(tag):
            return True
    return False


def _download_link(text: str) -> DownloadLink:
    return DownloadLink(html=text)


def _html_table(text: str) -> HtmlTable:
    return HtmlTable(html=text)


def _markdown_table(text: str) -> MarkdownTable:
    lines = _markdown_lines(text) or []
    header = split_markdown_row(lines[0])
    rows = tuple(split_markdown_row(line) for line in lines[2:])
    return MarkdownTable(header=header, rows=tuple(row for row in rows if row))


def _code_block(text: str) -> CodeBlock:
    match = _CODE_FENCE.search(text)
    return CodeBlock(code=match.group(1) if match else text)


def _numbered_list(text: str) -> NumberedList:
    return NumberedList(items=_numbered_items(text) or ())


Rule = Tuple[str, Callable[[str], bool], Callable[[str], RenderDecision]]

# Order is significant: first match wins.
RULES: Tuple[Rule, ...] = (
    ("download_link", _has_download_anchor, _download_link),
    ("html_table", lambda text: bool(_HTML_TABLE.search(text)), _html_table),
    ("markdown_table", lambda text: _markdown_lines(text) is not None, _markdown_table),
    ("code_block", lambda text: bool(_CODE_FENCE.search(text)), _code_block),
    ("numbered_list", lambda text: _numbered_items(text) is not None, _numbered_list),
    ("plain_text", lambda text: True, PlainText),
)


def classify(text: str) -> RenderDecision:
    """Pick exactly one display mode for ``text``."""
    text = text or ""
    for _, predicate, build in RULES:
        if predicate(text):
            return build(text)
    return PlainText(text)


def rule_name(text: str) -> str:
    """Name of the rule that classifies ``text``; useful in logs."""
    text = text or ""
    return next(name for name, predicate, _ in RULES if predicate(text))


def is_table_shaped(decision: RenderDecision) -> bool:
    return isinstance(decision, (HtmlTable, MarkdownTable))


def _escape_table(header: Tuple[str, ...], rows: Tuple[Tuple[str, ...], ...]) -> str:
    head = "".join(f"<th>{html.escape(cell)}</th>" for cell in header)
    body = "".join("<tr>" + "".join(f"<td>{html.escape(cell)}</td>" for cell in row) + "</tr>" for row in rows)
    return f'<table class="styled-table"><thead><tr>{head}</tr></thead><tbody>{body}</tbody></table>'


def render_html(decision: RenderDecision) -> str:
    """Markup of the chat bubble for a decision."""
    if isinstance(decision, HtmlTable):
        inner = _TABLE_OPEN.sub('<table class="styled-table"', decision.html)
        return f'<div class="chat-bubble"><div class="table-scroll"><div class="table-container">{inner}</div></div></div>'
    if isinstance(decision, DownloadLink):
        return f'<div class="chat-bubble">{decision.html}</div>'
    if isinstance(decision, MarkdownTable):
        table = _escape_table(decision.header, decision.rows)
        return f'<div class="chat-bubble"><div class="table-scroll">{table}</div></div>'
    if isinstance(decision, CodeBlock):
        return f'<div class="chat-bubble"><pre><code>{html.escape(decision.code)}</code></pre></div>'
    if isinstance(decision, NumberedList):
        items = "".join(f"<li>{html.escape(item)}</li>" for item in decision.items)
        return f'<div class="chat-bubble"><ol>{items}</ol></div>'
    return f'<div class="chat-bubble" style="white-space: pre-line">{html.escape(decision.text)}</div>'
