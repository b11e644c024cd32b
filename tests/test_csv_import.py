import io
import uuid
from datetime import date
from decimal import Decimal

import pytest
from openpyxl import Workbook

from tarot_panel.api.attendance.csv_import import (
    REASON_BAD_DATE,
    REASON_EMPTY_TAROTISTA,
    REASON_UNKNOWN_CODE,
    WorkerResolver,
    detect_separator,
    normalize_key,
    parse_amount,
    parse_attendance_rows,
    parse_attendance_text,
    parse_minutes,
    parse_sheet_date,
    read_csv_rows,
    read_xlsx_rows,
)


def test_normalize_key_folds_accents_case_and_spaces() -> None:
    assert normalize_key("  María   JOSÉ ") == "maria jose"
    assert normalize_key(None) == ""


def test_detect_separator_prefers_most_frequent() -> None:
    assert detect_separator("a;b;c\n1;2;3") == ";"
    assert detect_separator("a\tb\n1\t2") == "\t"
    assert detect_separator("a,b\n1,2") == ","
    assert detect_separator("single column") == ","


def test_read_csv_rows_strips_bom() -> None:
    rows, sep = read_csv_rows("\ufeffTAROTISTA;FECHA\nAna;01/02/2026\n")
    assert sep == ";"
    assert rows[0] == ["TAROTISTA", "FECHA"]


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("1:02:30", 63),
        ("12:30", 13),
        ("12:29", 12),
        ("12,5", 13),
        ("7", 7),
        ("", 0),
        ("15 min", 15),
    ],
)
def test_parse_minutes(raw: str, expected: int) -> None:
    assert parse_minutes(raw) == expected


def test_parse_sheet_date_formats() -> None:
    assert parse_sheet_date("03/02/2026") == date(2026, 2, 3)
    assert parse_sheet_date("3-2-2026") == date(2026, 2, 3)
    assert parse_sheet_date("2026-02-03") == date(2026, 2, 3)
    assert parse_sheet_date("31/02/2026") is None
    assert parse_sheet_date("ayer") is None


def test_parse_amount_handles_euro_format() -> None:
    assert parse_amount("1.234,50 €") == Decimal("1234.50")
    assert parse_amount("12.5") == Decimal("12.50")
    assert parse_amount("") == Decimal("0")


def test_header_row_is_detected_after_title_rows() -> None:
    text = (
        "Informe de llamadas,,,,\n"
        ",,,,\n"
        "TAROTISTA,FECHA,TIEMPO,CODIGO,CAPTADO\n"
        "Ana,01/02/2026,10:00,cliente,si\n"
    )
    sheet = parse_attendance_text(text)
    assert sheet.header_row_index == 2
    assert len(sheet.records) == 1
    record = sheet.records[0]
    assert record.tarotista == "Ana"
    assert record.minutes == 10
    assert record.codigo == "cliente"
    assert record.captado is True
    assert record.row_number == 4


def test_missing_header_raises() -> None:
    with pytest.raises(ValueError, match="HEADER_NOT_FOUND"):
        parse_attendance_rows([["a", "b"], ["1", "2"]])


def test_empty_code_with_minutes_defaults_to_cliente() -> None:
    text = "TAROTISTA;FECHA;TIEMPO;CODIGO\nAna;01/02/2026;5;\nLuz;01/02/2026;0;\n"
    sheet = parse_attendance_text(text)
    assert [r.codigo for r in sheet.records] == ["cliente"]
    assert sheet.defaulted_count == 1
    assert len(sheet.rejected) == 1


def test_rejections_are_counted_by_reason() -> None:
    text = (
        "TAROTISTA,FECHA,TIEMPO,CODIGO\n"
        ",01/02/2026,5,free\n"
        "Ana,32/01/2026,5,free\n"
        "Ana,01/02/2026,5,premium\n"
        "Ana,01/02/2026,5,REPITE\n"
    )
    sheet = parse_attendance_text(text)
    counts = sheet.reason_counts()
    assert counts[REASON_EMPTY_TAROTISTA] == 1
    assert counts[REASON_BAD_DATE] == 1
    assert counts[REASON_UNKNOWN_CODE] == 1
    assert sheet.total_rows == 4
    assert sheet.records[0].codigo == "repite"


def test_read_xlsx_rows_converts_cells() -> None:
    wb = Workbook()
    ws = wb.active
    ws.append(["TAROTISTA", "FECHA", "TIEMPO", "CODIGO"])
    ws.append(["Ana", date(2026, 2, 3), 12.0, "rueda"])
    buffer = io.BytesIO()
    wb.save(buffer)

    rows = read_xlsx_rows(buffer.getvalue())
    assert rows[1] == ["Ana", "03/02/2026", "12", "rueda"]
    sheet = parse_attendance_rows(rows)
    assert sheet.records[0].call_date == date(2026, 2, 3)


def test_worker_resolver_tiers() -> None:
    mapped, by_ref, by_name = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    resolver = WorkerResolver(
        mappings=[("Estrella (Tarde)", mapped)],
        workers=[(by_ref, "T-07", "Luna"), (by_name, None, "María José")],
    )
    assert resolver.resolve("Estrella (Tarde)") == mapped
    assert resolver.resolve("estrella  (tarde)") == mapped
    assert resolver.resolve("T-07") == by_ref
    assert resolver.resolve("MARIA JOSE") == by_name
    assert resolver.resolve("Desconocida") is None
    assert resolver.resolve("") is None
