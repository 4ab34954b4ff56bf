"""Export actions over a classified chat response.

All tabular exports go through ``extract_grid`` so the CSV and the workbook
always hold what the table widget shows.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass
from enum import Enum
from io import BytesIO
from typing import List, Sequence, Tuple

import pandas as pd
from bs4 import BeautifulSoup

from app.render.classifier import (
    CodeBlock,
    DownloadLink,
    HtmlTable,
    MarkdownTable,
    NumberedList,
    PlainText,
    RenderDecision,
    is_table_shaped,
    render_html,
)

NO_GRID_NOTICE = "This response has no table to export."
LIST_COLUMN = "item"
SHEET_NAME = "Response"


class ExportError(ValueError):
    """Raised when an export cannot be produced; the message is shown to the user."""


@dataclass(frozen=True)
class Grid:
    header: Tuple[str, ...]
    rows: Tuple[Tuple[str, ...], ...] = ()

    @staticmethod
    def from_cells(header: Sequence[str], rows: Sequence[Sequence[str]]) -> "Grid":
        """Build a rectangular grid; short rows are padded and the header widened."""
        width = max([len(header), *(len(row) for row in rows)]) if (header or rows) else 0
        padded_header = tuple(header) + ("",) * (width - len(header))
        padded_rows = tuple(tuple(row) + ("",) * (width - len(row)) for row in rows)
        return Grid(header=padded_header, rows=padded_rows)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(list(self.rows), columns=list(self.header), dtype=object)


class ExportAction(str, Enum):
    CSV = "csv"
    SPREADSHEET = "xlsx"
    MARKUP = "html"


@dataclass(frozen=True)
class ExportFile:
    file_name: str
    mime: str
    data: bytes


def _html_grid(markup: str) -> Grid:
    soup = BeautifulSoup(markup, "html.parser")
    table = soup.find("table")
    if table is None:
        raise ExportError(NO_GRID_NOTICE)
    cells: List[List[str]] = []
    header: List[str] | None = None
    for tr in table.find_all("tr"):
        if tr.find_parent("table") is not table:
            continue
        row = [cell.get_text(" ", strip=True) for cell in tr.find_all(["th", "td"], recursive=False)]
        if header is None and tr.find("th", recursive=False) is not None:
            header = row
        else:
            cells.append(row)
    if header is None:
        if not cells:
            raise ExportError(NO_GRID_NOTICE)
        header = cells.pop(0)
    return Grid.from_cells(header, cells)


def extract_grid(decision: RenderDecision) -> Grid:
    """Return the header and data rows shown for ``decision``.

    Raises ``ExportError`` when the decision has no tabular shape.
    """
    if isinstance(decision, HtmlTable):
        grid = _html_grid(decision.html)
    elif isinstance(decision, MarkdownTable):
        grid = Grid.from_cells(decision.header, decision.rows)
    elif isinstance(decision, NumberedList):
        grid = Grid.from_cells((LIST_COLUMN,), [(item,) for item in decision.items])
    else:
        raise ExportError(NO_GRID_NOTICE)
    if not grid.header:
        # rows without cells; a zero-column file is never written
        raise ExportError(NO_GRID_NOTICE)
    return grid


def available_actions(decision: RenderDecision) -> Tuple[ExportAction, ...]:
    """Exports offered for ``decision``: the tabular ones only for table-shaped responses."""
    if is_table_shaped(decision):
        return (ExportAction.CSV, ExportAction.SPREADSHEET, ExportAction.MARKUP)
    return (ExportAction.MARKUP,)


def to_csv(grid: Grid) -> str:
    """Every field quoted, embedded quotes doubled, CRLF between rows, header first."""
    text = grid.to_frame().to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator="\r\n")
    return text[:-2] if text.endswith("\r\n") else text


def to_xlsx(grid: Grid) -> bytes:
    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="xlsxwriter") as writer:
        grid.to_frame().to_excel(writer, index=False, sheet_name=SHEET_NAME)
    return buffer.getvalue()


def to_markup(decision: RenderDecision) -> str:
    return render_html(decision)


def visible_text(decision: RenderDecision) -> str:
    """Text a user would copy from the rendered bubble."""
    if isinstance(decision, (HtmlTable, MarkdownTable)):
        try:
            grid = extract_grid(decision)
        except ExportError:
            return BeautifulSoup(render_html(decision), "html.parser").get_text(" ", strip=True)
        return "\n".join("\t".join(row) for row in (grid.header, *grid.rows))
    if isinstance(decision, DownloadLink):
        return BeautifulSoup(decision.html, "html.parser").get_text(" ", strip=True)
    if isinstance(decision, CodeBlock):
        return decision.code
    if isinstance(decision, NumberedList):
        return "\n".join(f"{index}. {item}" for index, item in enumerate(decision.items, start=1))
    if isinstance(decision, PlainText):
        return decision.text
    raise TypeError(f"Unknown render decision {type(decision).__name__}")


def export(decision: RenderDecision, action: ExportAction) -> ExportFile:
    """Produce the download for ``action``; raises ``ExportError`` instead of writing an empty file."""
    if action is ExportAction.CSV:
        data = to_csv(extract_grid(decision)).encode("utf-8")
        return ExportFile(file_name="response.csv", mime="text/csv", data=data)
    if action is ExportAction.SPREADSHEET:
        data = to_xlsx(extract_grid(decision))
        return ExportFile(
            file_name="response.xlsx",
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            data=data,
        )
    if action is ExportAction.MARKUP:
        return ExportFile(file_name="response.html", mime="text/html", data=to_markup(decision).encode("utf-8"))
    raise ExportError(f"Unsupported export action '{action}'.")
