"""Formatting of query results returned by the agent's database tool."""

from __future__ import annotations

import base64
import csv
import html
import io
import re
import time
from typing import Any, Dict, List, Sequence

NO_DATA_HTML = "<div>No data</div>"

_DOWNLOAD_REQUEST = re.compile(r"\bcsv\b|download|spreadsheet", re.IGNORECASE)


def wants_download(prompt: str) -> bool:
    """True when the user asked for a CSV / download / spreadsheet."""
    return bool(_DOWNLOAD_REQUEST.search(prompt or ""))


def _cell(value: Any) -> str:
    return "" if value is None else str(value)


def rows_to_html_table(columns: Sequence[str], records: List[Dict[str, Any]]) -> str:
    if not records:
        return NO_DATA_HTML
    header = "".join(f"<th>{html.escape(str(column))}</th>" for column in columns)
    body = "".join(
        "<tr>" + "".join(f"<td>{html.escape(_cell(record.get(column)))}</td>" for column in columns) + "</tr>"
        for record in records
    )
    return f'<table border="1"><thead><tr>{header}</tr></thead><tbody>{body}</tbody></table>'


def rows_to_csv(columns: Sequence[str], records: List[Dict[str, Any]]) -> str:
    """Header unquoted, every data field quoted, CRLF line endings."""
    if not records:
        return ""
    buffer = io.StringIO()
    buffer.write(",".join(str(column) for column in columns) + "\r\n")
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\r\n")
    writer.writerows([_cell(record.get(column)) for column in columns] for record in records)
    return buffer.getvalue().rstrip("\r\n")


def csv_download_link(csv_text: str, table_name: str | None) -> str:
    file_name = f"{table_name or 'data'}_{int(time.time() * 1000)}.csv"
    payload = base64.b64encode(csv_text.encode("utf-8")).decode("ascii")
    return (
        f'Here is your CSV file: <a href="data:text/csv;base64,{payload}" '
        f'download="{html.escape(file_name, quote=True)}"><b>Download CSV</b></a>'
    )
