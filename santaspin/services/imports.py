from __future__ import annotations

import csv
import io
import logging
import zipfile
from dataclasses import dataclass, field
from typing import Iterable

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from ..errors import ValidationFailed
from ..extensions import db
from ..models import Participant, normalize_name
from ..store import find_by_external_id, transactional
from .admin import generate_external_id

logger = logging.getLogger(__name__)

IMPORT_KEYS = ("external_id", "name")

# Header spellings seen in the staff sheets, most specific first.
EMPLOYEE_ID_COLUMNS = ("Employee ID", "EmployeeID", "employee_id", "ID", "ID Number")
NAME_COLUMNS = ("Name (Surname First)", "Name", "NAME", "name", "Full Name", "FULL NAME")
DEPARTMENT_COLUMNS = ("Department", "DEPARTMENT", "department", "Dept")


@dataclass
class ImportReport:
    success_count: int = 0
    skipped: list[dict] = field(default_factory=list)

    @property
    def message(self) -> str:
        return f"{self.success_count} staff members uploaded successfully"

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "successCount": self.success_count,
            "skipped": list(self.skipped),
        }


# --------- Reading ----------

def read_rows(data: bytes, filename: str) -> list[dict]:
    """Rows of the first sheet (xlsx) or of a csv file, keyed by header."""
    suffix = (filename or "").rsplit(".", 1)[-1].lower()

    if suffix == "csv":
        try:
            text = io.StringIO(data.decode("utf-8-sig"))
            return [row for row in csv.DictReader(text) if any(str(v or "").strip() for v in row.values())]
        except (UnicodeDecodeError, csv.Error) as e:
            raise ValidationFailed(f"Could not read {filename}: not a UTF-8 csv file") from e

    if suffix in ("xlsx", "xlsm"):
        try:
            workbook = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
        except (zipfile.BadZipFile, InvalidFileException, KeyError) as e:
            raise ValidationFailed(f"Could not read {filename}: not a valid workbook") from e
        try:
            rows = workbook.worksheets[0].iter_rows(values_only=True)
            header = next(rows, None)
            if header is None:
                return []
            keys = [str(h).strip() if h is not None else "" for h in header]
            return [
                dict(zip(keys, values))
                for values in rows
                if any(v not in (None, "") for v in values)
            ]
        finally:
            workbook.close()

    raise ValidationFailed(f"Unsupported file type: {filename or 'unnamed upload'}")


# --------- Normalizing ----------

def _squash(header: str) -> str:
    return "".join(ch for ch in str(header).lower() if ch.isalnum())


def _cell_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _pick(row: dict, columns: Iterable[str]) -> str:
    for column in columns:
        text = _cell_text(row.get(column))
        if text:
            return text

    wanted = {_squash(c) for c in columns}
    for header, value in row.items():
        if header is not None and _squash(header) in wanted:
            text = _cell_text(value)
            if text:
                return text
    return ""


def normalize_row(row: dict, group: str, *, require_id: bool = True) -> dict:
    external_id = _pick(row, EMPLOYEE_ID_COLUMNS)
    name = _pick(row, NAME_COLUMNS)
    department = _pick(row, DEPARTMENT_COLUMNS)

    missing = []
    if require_id and not external_id:
        missing.append("employee id")
    if not name:
        missing.append("name")
    if not department:
        missing.append("department")
    if missing:
        raise ValidationFailed(f"Missing {', '.join(missing)}")

    return {
        "external_id": external_id or None,
        "display_name": normalize_name(name),
        "department": department,
        "group": group,
    }


# --------- Writing ----------

def _upsert(record: dict, key: str) -> Participant:
    if key == "external_id":
        participant = find_by_external_id(record["external_id"])
    else:
        participant = Participant.query.filter_by(
            display_name=record["display_name"], department=record["department"]
        ).first()

    if record["external_id"] and key != "external_id":
        holder = find_by_external_id(record["external_id"])
        if holder is not None and holder is not participant:
            raise ValidationFailed(f"Employee ID {record['external_id']} belongs to {holder.display_name}")

    if participant is None:
        participant = Participant(external_id=record["external_id"] or generate_external_id())
        db.session.add(participant)
    elif record["external_id"]:
        participant.external_id = record["external_id"]

    participant.display_name = record["display_name"]
    participant.department = record["department"]
    participant.group = record["group"]
    return participant


@transactional
def import_rows(rows: Iterable[dict], group: str, key: str = "external_id") -> ImportReport:
    """
    Upsert every valid row into `group`. Invalid rows are logged and skipped;
    the rest of the batch is still committed.
    """
    group = (group or "").strip()
    if not group:
        raise ValidationFailed("Group is required")
    if key not in IMPORT_KEYS:
        raise ValidationFailed(f"Unknown import key {key!r}")

    report = ImportReport()
    # Row 1 is the header in both sheet formats.
    for number, row in enumerate(rows, start=2):
        try:
            record = normalize_row(row, group, require_id=(key == "external_id"))
            _upsert(record, key)
        except ValidationFailed as e:
            logger.warning("Skipping row %d: %s", number, e)
            report.skipped.append({"row": number, "reason": str(e)})
            continue

        # Flush per row so later rows see earlier ones in the same sheet.
        db.session.flush()
        report.success_count += 1

    logger.info("Imported %d rows into %s (%d skipped)", report.success_count, group, len(report.skipped))
    return report
