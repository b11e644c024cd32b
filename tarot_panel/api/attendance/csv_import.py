"""Attendance sheet parsing and normalization.

The call sheet is exported from a spreadsheet as CSV (comma, semicolon or tab
separated) or uploaded as an ``.xlsx`` workbook. Both end up as a list of
string rows that go through :func:`parse_attendance_rows`, which:

- locates the header row (explicit index, or first row with a TAROTISTA cell),
- maps headers by accent/case-folded key,
- converts every data row into an :class:`AttendanceRecord` or a rejection.

Resolving the TAROTISTA name to a worker is done separately by
:class:`WorkerResolver` since it needs database state.
"""

import csv
import io
import math
import re
import unicodedata
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from openpyxl import load_workbook

from tarot_panel.core.models.attendance import CALL_CODES, CODIGO_CLIENTE

SEPARATORS = (",", ";", "\t")
TRUE_VALUES = {"true", "1", "si", "yes", "x"}

# Normalized header key -> record field
HEADER_ALIASES = {
    "tarotista": "tarotista",
    "telefonista": "telefonista",
    "codigo": "codigo",
    "cod": "codigo",
    "captado": "captado",
    "captada": "captado",
    "tiempo": "tiempo",
    "minutos": "tiempo",
    "fecha": "fecha",
    "importe": "importe",
    "importe eur": "importe",
}

REASON_EMPTY_TAROTISTA = "TAROTISTA vacío"
REASON_BAD_DATE = "FECHA inválida"
REASON_EMPTY_CODE = "CODIGO vacío"
REASON_UNKNOWN_CODE = "CODIGO desconocido"


def normalize_key(value: Optional[str]) -> str:
    """Accent-fold, case-fold and collapse whitespace: ``"  María  José "`` -> ``"maria jose"``."""
    if value is None:
        return ""
    decomposed = unicodedata.normalize("NFD", str(value))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return re.sub(r"\s+", " ", stripped).strip().casefold()


def strip_bom(text: str) -> str:
    return text[1:] if text.startswith("\ufeff") else text


def detect_separator(text: str, sample_lines: int = 20) -> str:
    """Pick the separator with the most occurrences in the first lines (``,`` on ties)."""
    sample = text.splitlines()[:sample_lines]
    counts = {sep: sum(line.count(sep) for line in sample) for sep in SEPARATORS}
    best = max(SEPARATORS, key=lambda sep: (counts[sep], sep == ","))
    return best if counts[best] > 0 else ","


def read_csv_rows(text: str, separator: Optional[str] = None) -> Tuple[List[List[str]], str]:
    text = strip_bom(text)
    sep = separator or detect_separator(text)
    reader = csv.reader(io.StringIO(text), delimiter=sep)
    rows = [[cell.strip() for cell in row] for row in reader]
    return rows, sep


def read_xlsx_rows(content: bytes) -> List[List[str]]:
    """Read the first worksheet of an .xlsx workbook as string rows."""
    wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        ws = wb.worksheets[0]
        rows: List[List[str]] = []
        for row in ws.iter_rows(values_only=True):
            rows.append([_cell_to_str(v) for v in row])
        return rows
    finally:
        wb.close()


def _cell_to_str(value) -> str:
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.strftime("%d/%m/%Y")
    if isinstance(value, time):
        return value.strftime("%H:%M:%S")
    if isinstance(value, timedelta):
        total = int(value.total_seconds())
        return f"{total // 3600}:{(total % 3600) // 60:02d}:{total % 60:02d}"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def parse_minutes(value: Optional[str]) -> int:
    """Parse TIEMPO: ``H:MM:SS``, ``MM:SS``, decimal minutes (``12,5``) or digits."""
    s = (value or "").strip()
    if not s:
        return 0
    if ":" in s:
        parts = s.split(":")
        try:
            nums = [float(p.replace(",", ".") or 0) for p in parts]
        except ValueError:
            nums = None
        if nums is not None:
            if len(nums) == 3:
                h, m, sec = nums
                return _round_half_up(h * 60 + m + sec / 60)
            if len(nums) == 2:
                m, sec = nums
                return _round_half_up(m + sec / 60)
    try:
        return _round_half_up(float(s.replace(",", ".")))
    except ValueError:
        digits = re.sub(r"\D", "", s)
        return int(digits) if digits else 0


def parse_sheet_date(value: Optional[str]) -> Optional[date]:
    s = (value or "").strip()
    if not s:
        return None
    m = re.match(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$", s)
    if m:
        day, month, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
    else:
        m = re.match(r"^(\d{4})-(\d{1,2})-(\d{1,2})", s)
        if not m:
            return None
        year, month, day = int(m.group(1)), int(m.group(2)), int(m.group(3))
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_bool(value: Optional[str]) -> bool:
    return normalize_key(value) in TRUE_VALUES


def parse_amount(value: Optional[str]) -> Decimal:
    """Euro amount with optional symbol and decimal comma: ``"1.234,50 €"`` -> ``1234.50``."""
    s = re.sub(r"[^\d,.\-]", "", (value or "").strip())
    if not s:
        return Decimal("0")
    if "," in s:
        s = s.replace(".", "").replace(",", ".")
    try:
        return Decimal(s).quantize(Decimal("0.01"))
    except InvalidOperation:
        return Decimal("0")


@dataclass
class AttendanceRecord:
    row_number: int
    tarotista: str
    telefonista: Optional[str]
    call_date: date
    minutes: int
    codigo: str
    captado: bool
    importe_eur: Decimal
    raw: Dict[str, str]
    defaulted_codigo: bool = False


@dataclass
class RejectedRow:
    row_number: int
    reason: str
    raw: Dict[str, str]


@dataclass
class ParsedSheet:
    separator: Optional[str]
    header_row_index: int
    headers: List[str]
    records: List[AttendanceRecord] = field(default_factory=list)
    rejected: List[RejectedRow] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return len(self.records) + len(self.rejected)

    @property
    def defaulted_count(self) -> int:
        return sum(1 for r in self.records if r.defaulted_codigo)

    def reason_counts(self) -> Counter:
        return Counter(r.reason for r in self.rejected)


def find_header_row(rows: Sequence[Sequence[str]]) -> Optional[int]:
    for idx, row in enumerate(rows):
        if any(normalize_key(cell) == "tarotista" for cell in row):
            return idx
    return None


def _column_map(headers: Sequence[str]) -> Dict[str, int]:
    mapping: Dict[str, int] = {}
    for idx, header in enumerate(headers):
        target = HEADER_ALIASES.get(normalize_key(header))
        if target and target not in mapping:
            mapping[target] = idx
    return mapping


def parse_attendance_rows(
    rows: List[List[str]],
    *,
    header_row_index: Optional[int] = None,
    separator: Optional[str] = None,
) -> ParsedSheet:
    if header_row_index is None:
        header_row_index = find_header_row(rows)
    if header_row_index is None or header_row_index >= len(rows):
        raise ValueError("HEADER_NOT_FOUND")

    headers = [h.strip().upper() for h in rows[header_row_index]]
    columns = _column_map(headers)
    if "tarotista" not in columns:
        raise ValueError("HEADER_NOT_FOUND")

    sheet = ParsedSheet(separator=separator, header_row_index=header_row_index, headers=headers)

    def cell(row: Sequence[str], name: str) -> str:
        idx = columns.get(name)
        if idx is None or idx >= len(row):
            return ""
        return (row[idx] or "").strip()

    for offset, row in enumerate(rows[header_row_index + 1:], start=1):
        if not any((c or "").strip() for c in row):
            continue
        row_number = header_row_index + offset + 1
        raw = {headers[i]: row[i] for i in range(min(len(headers), len(row))) if headers[i]}

        tarotista = cell(row, "tarotista")
        if not tarotista:
            sheet.rejected.append(RejectedRow(row_number, REASON_EMPTY_TAROTISTA, raw))
            continue

        call_date = parse_sheet_date(cell(row, "fecha"))
        if call_date is None:
            sheet.rejected.append(RejectedRow(row_number, REASON_BAD_DATE, raw))
            continue

        minutes = parse_minutes(cell(row, "tiempo"))
        codigo = normalize_key(cell(row, "codigo"))
        defaulted = False
        if not codigo:
            if minutes > 0:
                codigo = CODIGO_CLIENTE
                defaulted = True
            else:
                sheet.rejected.append(RejectedRow(row_number, REASON_EMPTY_CODE, raw))
                continue
        elif codigo not in CALL_CODES:
            sheet.rejected.append(RejectedRow(row_number, REASON_UNKNOWN_CODE, raw))
            continue

        sheet.records.append(
            AttendanceRecord(
                row_number=row_number,
                tarotista=tarotista,
                telefonista=cell(row, "telefonista") or None,
                call_date=call_date,
                minutes=minutes,
                codigo=codigo,
                captado=parse_bool(cell(row, "captado")),
                importe_eur=parse_amount(cell(row, "importe")),
                raw=raw,
                defaulted_codigo=defaulted,
            )
        )
    return sheet


def parse_attendance_text(text: str, *, header_row_index: Optional[int] = None) -> ParsedSheet:
    rows, sep = read_csv_rows(text)
    return parse_attendance_rows(rows, header_row_index=header_row_index, separator=sep)


class WorkerResolver:
    """Three-tier TAROTISTA -> worker lookup.

    1. manual mapping table (exact sheet name, then folded name)
    2. ``external_ref`` exact match
    3. folded ``display_name`` match
    """

    def __init__(
        self,
        mappings: Iterable[Tuple[str, UUID]],
        workers: Iterable[Tuple[UUID, Optional[str], str]],
    ) -> None:
        self._mapping_exact: Dict[str, UUID] = {}
        self._mapping_folded: Dict[str, UUID] = {}
        for name, worker_id in mappings:
            self._mapping_exact[name.strip()] = worker_id
            self._mapping_folded.setdefault(normalize_key(name), worker_id)

        self._by_ref: Dict[str, UUID] = {}
        self._by_name: Dict[str, UUID] = {}
        for worker_id, external_ref, display_name in workers:
            if external_ref and external_ref.strip():
                self._by_ref.setdefault(external_ref.strip(), worker_id)
            key = normalize_key(display_name)
            if key:
                self._by_name.setdefault(key, worker_id)

    def resolve(self, name: str) -> Optional[UUID]:
        name = (name or "").strip()
        if not name:
            return None
        folded = normalize_key(name)
        return (
            self._mapping_exact.get(name)
            or self._mapping_folded.get(folded)
            or self._by_ref.get(name)
            or self._by_name.get(folded)
        )
