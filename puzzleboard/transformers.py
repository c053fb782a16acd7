import csv
import io
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlencode

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Alignment, Font
from openpyxl.utils import get_column_letter

from .errors import ExportGenerationError, ValidationError
from .fields import JOINED_FIELDS, PARTICIPANT_INFO, QUIZ_RESPONSES, labels

CSV_CONTENT_TYPE = "text/csv; charset=utf-8"
XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
IQY_CONTENT_TYPE = "text/x-ms-iqy; charset=utf-8"

WEB_QUERY_TARGETS = {
    "quiz": "/api/quiz/export?format=raw",
    "scores": "/api/scores/export",
    "combined": "/api/export/combined?format=json",
}


def utc_timestamp(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def export_filename(kind: str, extension: str, now: Optional[datetime] = None) -> str:
    stamp = utc_timestamp(now).replace(":", "-").replace(".", "-")[:19]
    return f"{kind}-{stamp}.{extension}"


def to_raw(rows, fields) -> list:
    return [{field.column: row.get(field.column) for field in fields} for row in rows]


def format_row(row: dict, fields) -> dict:
    nested = {}
    for field in fields:
        section = nested.setdefault(field.section, {})
        value = row.get(field.column)
        if field.is_answer and value is None:
            continue
        section[field.key] = value
    return nested


def format_joined_row(row: dict) -> dict:
    nested = format_row(row, JOINED_FIELDS)
    if row.get("quiz_id") is None:
        nested[PARTICIPANT_INFO] = None
        nested[QUIZ_RESPONSES] = None
    return nested


def to_formatted(rows, fields, joined: bool = False) -> list:
    if joined:
        return [format_joined_row(row) for row in rows]
    return [format_row(row, fields) for row in rows]


def _csv_value(value, field):
    if value is None:
        return ""
    if field.kind == "int" and isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return str(value)


def to_csv(rows, fields) -> str:
    buffer = io.StringIO()
    # text is always quoted (absent values as ""), numbers are left bare
    writer = csv.writer(buffer, quoting=csv.QUOTE_NONNUMERIC)
    writer.writerow(labels(fields))
    for row in rows:
        writer.writerow([_csv_value(row.get(field.column), field) for field in fields])
    return buffer.getvalue()


def _cell_value(value):
    if isinstance(value, str):
        return ILLEGAL_CHARACTERS_RE.sub("", value)
    return value


def to_xlsx(rows, fields, sheet_title: str = "Export") -> bytes:
    try:
        workbook = Workbook()
        sheet = workbook.active
        sheet.title = sheet_title[:31]

        header = labels(fields)
        sheet.append(header)
        header_font = Font(bold=True)
        center = Alignment(horizontal="center", vertical="center", wrap_text=True)
        for col, label in enumerate(header, start=1):
            cell = sheet.cell(row=1, column=col)
            cell.font = header_font
            cell.alignment = center
            sheet.column_dimensions[get_column_letter(col)].width = max(12, min(40, len(label) + 4))
        sheet.freeze_panes = "A2"

        for row in rows:
            sheet.append([_cell_value(row.get(field.column)) for field in fields])
            # free text is stored as a literal string, never as a formula
            for col, field in enumerate(fields, start=1):
                cell = sheet.cell(row=sheet.max_row, column=col)
                if field.kind == "text" and isinstance(cell.value, str):
                    cell.data_type = "s"

        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()
    except Exception as exc:
        raise ExportGenerationError(f"Failed to generate spreadsheet: {exc}") from exc


def web_query_descriptor(kind: str, base_url: str, token: Optional[str] = None) -> str:
    """Excel web query (.iqy) pointing back at the raw export for ``kind``."""
    path = WEB_QUERY_TARGETS.get(kind)
    if path is None:
        raise ValidationError(
            f"Unknown web query kind: {kind}", invalid=["kind"], required=sorted(WEB_QUERY_TARGETS)
        )

    url = base_url.rstrip("/") + path
    if token:
        url += ("&" if "?" in url else "?") + urlencode({"token": token})

    lines = [
        "WEB",
        "1",
        url,
        "",
        "Selection=EntirePage",
        "Formatting=None",
        "PreFormattedTextToColumns=True",
        "ConsecutiveDelimitersAsOne=True",
        "SingleBlockTextImport=False",
        "DisableDateRecognition=False",
        "DisableRedirections=False",
    ]
    return "\r\n".join(lines) + "\r\n"
