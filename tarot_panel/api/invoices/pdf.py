"""Invoice PDF layout drawn directly with reportlab canvas primitives."""

import io
import os
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Tuple

from reportlab.lib.colors import HexColor, white
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

from tarot_panel.core.months import month_label_es

BRAND = HexColor("#4C1D95")
MUTED = HexColor("#6B7280")
RULE = HexColor("#D1D5DB")
WATERMARK = HexColor("#EDE9FE")

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 18 * mm
BOTTOM = 22 * mm
ROW_HEIGHT = 6.5 * mm
HEADER_BAND = 26 * mm


def format_eur(value) -> str:
    """es-ES currency format: ``1234.5`` -> ``1234,50 €``, ``12345`` -> ``12.345,00 €``.

    Like the es-ES locale, 4-digit amounts are not grouped.
    """
    amount = Decimal(str(value or 0)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    sign = "-" if amount < 0 else ""
    integer, _, cents = f"{abs(amount):.2f}".partition(".")
    if len(integer) > 4:
        groups = []
        while len(integer) > 3:
            groups.insert(0, integer[-3:])
            integer = integer[:-3]
        groups.insert(0, integer)
        integer = ".".join(groups)
    return f"{sign}{integer},{cents} €"


def invoice_filename(worker_name: str, month_date: date) -> str:
    folded = unicodedata.normalize("NFD", worker_name or "trabajador")
    ascii_name = "".join(ch for ch in folded if not unicodedata.combining(ch))
    safe = re.sub(r"[^A-Za-z0-9_-]", "", re.sub(r"\s+", "_", ascii_name.strip())) or "trabajador"
    return f"factura_{safe}_{month_date.isoformat()}.pdf"


@dataclass
class InvoicePdfData:
    worker_name: str
    month_date: date
    status: str
    locked: bool
    total_eur: Decimal
    base_eur: Decimal = Decimal("0")
    bonuses_eur: Decimal = Decimal("0")
    penalties_eur: Decimal = Decimal("0")
    lines: List[Tuple[str, Decimal]] = field(default_factory=list)
    worker_note: Optional[str] = None
    admin_note: Optional[str] = None


class InvoicePdf:
    def __init__(self, data: InvoicePdfData, logo_path: Optional[str] = None) -> None:
        self.data = data
        self.logo_path = logo_path if logo_path and os.path.isfile(logo_path) else None
        self.page_count = 0
        self._canvas: Optional[canvas.Canvas] = None
        self._y = 0.0

    @property
    def watermark_text(self) -> Optional[str]:
        if self.data.status == "rejected":
            return "RECHAZADA"
        if not self.data.locked:
            return "BORRADOR"
        return None

    def render(self) -> bytes:
        buf = io.BytesIO()
        self._canvas = canvas.Canvas(buf, pagesize=A4)
        self._canvas.setTitle(f"Factura {self.data.worker_name} {self.data.month_date.isoformat()}")
        self._start_page(first=True)
        self._draw_summary()
        self._draw_lines()
        self._draw_notes()
        self._finish_page()
        self._canvas.save()
        return buf.getvalue()

    # -- page furniture --

    def _start_page(self, first: bool = False) -> None:
        c = self._canvas
        self.page_count += 1
        if self.watermark_text:
            c.saveState()
            c.setFillColor(WATERMARK)
            c.setFont("Helvetica-Bold", 84)
            c.translate(PAGE_WIDTH / 2, PAGE_HEIGHT / 2)
            c.rotate(40)
            c.drawCentredString(0, 0, self.watermark_text)
            c.restoreState()

        band = HEADER_BAND if first else HEADER_BAND / 2
        c.setFillColor(BRAND)
        c.rect(0, PAGE_HEIGHT - band, PAGE_WIDTH, band, stroke=0, fill=1)
        c.setFillColor(white)
        if first:
            text_x = MARGIN
            if self.logo_path:
                size = band - 8 * mm
                c.drawImage(
                    ImageReader(self.logo_path),
                    MARGIN,
                    PAGE_HEIGHT - band + 4 * mm,
                    width=size,
                    height=size,
                    preserveAspectRatio=True,
                    mask="auto",
                )
                text_x += size + 4 * mm
            c.setFont("Helvetica-Bold", 16)
            c.drawString(text_x, PAGE_HEIGHT - 12 * mm, "Tarot Celestial")
            c.setFont("Helvetica", 10)
            c.drawString(text_x, PAGE_HEIGHT - 18 * mm, "Panel Interno")
        else:
            c.setFont("Helvetica", 9)
            c.drawString(MARGIN, PAGE_HEIGHT - band + 4 * mm, f"Factura de trabajador · {self.data.worker_name}")
        c.setFillColor(HexColor("#111827"))
        self._y = PAGE_HEIGHT - band - 12 * mm

    def _finish_page(self) -> None:
        c = self._canvas
        c.setStrokeColor(RULE)
        c.line(MARGIN, BOTTOM - 6 * mm, PAGE_WIDTH - MARGIN, BOTTOM - 6 * mm)
        c.setFont("Helvetica", 8)
        c.setFillColor(MUTED)
        c.drawRightString(PAGE_WIDTH - MARGIN, BOTTOM - 11 * mm, f"Página {self.page_count}")
        c.setFillColor(HexColor("#111827"))

    def _new_page(self) -> None:
        self._finish_page()
        self._canvas.showPage()
        self._start_page()

    def _ensure_space(self, height: float) -> bool:
        """Break the page if ``height`` does not fit; returns True when a new page started."""
        if self._y - height < BOTTOM:
            self._new_page()
            return True
        return False

    # -- content --

    def _draw_summary(self) -> None:
        c, d = self._canvas, self.data
        c.setFont("Helvetica-Bold", 18)
        c.drawString(MARGIN, self._y, "Factura de trabajador")
        self._y -= 10 * mm

        closed = "CERRADA" if d.locked else "ABIERTA"
        for label, value in (
            ("Trabajador", d.worker_name),
            ("Mes", month_label_es(d.month_date)),
            ("Estado", f"{d.status.upper()} · {closed}"),
        ):
            c.setFont("Helvetica-Bold", 10)
            c.drawString(MARGIN, self._y, f"{label}:")
            c.setFont("Helvetica", 10)
            c.drawString(MARGIN + 26 * mm, self._y, value)
            self._y -= 6 * mm

        self._y -= 2 * mm
        box_h = 16 * mm
        c.setStrokeColor(BRAND)
        c.setLineWidth(1.2)
        c.rect(MARGIN, self._y - box_h, PAGE_WIDTH - 2 * MARGIN, box_h, stroke=1, fill=0)
        c.setFont("Helvetica", 10)
        c.drawString(MARGIN + 4 * mm, self._y - 6 * mm, "Total")
        c.setFont("Helvetica-Bold", 16)
        c.drawRightString(PAGE_WIDTH - MARGIN - 4 * mm, self._y - 11 * mm, format_eur(d.total_eur))
        c.setFont("Helvetica", 8)
        c.setFillColor(MUTED)
        c.drawString(
            MARGIN + 4 * mm,
            self._y - 12 * mm,
            f"Base {format_eur(d.base_eur)} · Bonos {format_eur(d.bonuses_eur)} · "
            f"Penalizaciones {format_eur(d.penalties_eur)}",
        )
        c.setFillColor(HexColor("#111827"))
        c.setLineWidth(1)
        self._y -= box_h + 10 * mm

    def _draw_table_header(self) -> None:
        c = self._canvas
        c.setFont("Helvetica-Bold", 10)
        c.drawString(MARGIN, self._y, "Concepto")
        c.drawRightString(PAGE_WIDTH - MARGIN, self._y, "Importe")
        self._y -= 2 * mm
        c.setStrokeColor(RULE)
        c.line(MARGIN, self._y, PAGE_WIDTH - MARGIN, self._y)
        self._y -= ROW_HEIGHT - 2 * mm

    def _draw_lines(self) -> None:
        c = self._canvas
        self._ensure_space(20 * mm)
        c.setFont("Helvetica-Bold", 12)
        c.drawString(MARGIN, self._y, "Detalle")
        self._y -= 8 * mm
        self._draw_table_header()

        if not self.data.lines:
            c.setFont("Helvetica-Oblique", 10)
            c.setFillColor(MUTED)
            c.drawString(MARGIN, self._y, "Sin conceptos")
            c.setFillColor(HexColor("#111827"))
            self._y -= ROW_HEIGHT
            return

        label_width = PAGE_WIDTH - 2 * MARGIN - 40 * mm
        for label, amount in self.data.lines:
            wrapped = simpleSplit(label, "Helvetica", 10, label_width) or [""]
            if self._ensure_space(ROW_HEIGHT * len(wrapped)):
                self._draw_table_header()
            c.setFont("Helvetica", 10)
            c.drawRightString(PAGE_WIDTH - MARGIN, self._y, format_eur(amount))
            for part in wrapped:
                c.drawString(MARGIN, self._y, part)
                self._y -= ROW_HEIGHT

    def _draw_notes(self) -> None:
        c = self._canvas
        for title, text in (("Notas del trabajador", self.data.worker_note), ("Notas de administración", self.data.admin_note)):
            if not text or not text.strip():
                continue
            wrapped = simpleSplit(text.strip(), "Helvetica", 9, PAGE_WIDTH - 2 * MARGIN)
            self._y -= 4 * mm
            self._ensure_space(8 * mm + 5 * mm * len(wrapped[:2]))
            c.setFont("Helvetica-Bold", 10)
            c.drawString(MARGIN, self._y, title)
            self._y -= 6 * mm
            c.setFont("Helvetica", 9)
            for part in wrapped:
                if self._ensure_space(5 * mm):
                    c.setFont("Helvetica", 9)
                c.drawString(MARGIN, self._y, part)
                self._y -= 5 * mm


def render_invoice_pdf(data: InvoicePdfData, logo_path: Optional[str] = None) -> bytes:
    return InvoicePdf(data, logo_path=logo_path).render()
