"""Printable (PDF) and workbook (XLSX) reports over one filtered snapshot.

``ReportService.gather`` reads the store once and computes the totals once;
both renderers work from that same ``ReportData`` so the figures they show
always agree.
"""

import logging
import os
import tempfile
import unicodedata
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from io import BytesIO
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape
from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from sqlalchemy.orm import Session

from aggregation import PeriodTotals, category_breakdown, period_totals, top_categories
from config import get_settings
from errors import ExportError
from models import Client, Project, ProjectStatus, Transaction, TransactionType, utcnow
from money import cents_to_decimal, format_currency
from periods import Period, local_today, resolve_period
from schemas import ExportOptions
from services import ClientService, ProjectService, TransactionService, get_current_user_id

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

PDF_MAX_TRANSACTIONS = 20
PDF_MAX_CLIENTS = 15
PDF_MAX_PROJECTS = 15

STATUS_LABELS = {
    ProjectStatus.in_progress: "IN PROGRESS",
    ProjectStatus.completed: "COMPLETED",
    ProjectStatus.cancelled: "CANCELLED",
}

TYPE_LABELS = {
    TransactionType.income: "Income",
    TransactionType.expense: "Expense",
}

EXPORT_FORMATS = ("pdf", "xlsx")


@dataclass
class ReportData:
    period: Period
    options: ExportOptions
    totals: PeriodTotals
    generated_at: datetime
    transactions: list[Transaction] = field(default_factory=list)
    clients: list[Client] = field(default_factory=list)
    projects: list[Project] = field(default_factory=list)
    categories: list[dict[str, object]] = field(default_factory=list)
    top_categories: list[dict[str, object]] = field(default_factory=list)


class ReportService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.txn_service = TransactionService(session, self.user_id)
        self.client_service = ClientService(session, self.user_id)
        self.project_service = ProjectService(session, self.user_id)

    def gather(
        self,
        options: ExportOptions,
        *,
        today: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> ReportData:
        today = today or local_today()
        period = resolve_period(options.period, options.start, options.end, today=today)
        # already ordered newest first
        transactions = self.txn_service.list(period, options.transaction_type)
        breakdown = category_breakdown(transactions)
        report = ReportData(
            period=period,
            options=options,
            totals=period_totals(transactions),
            generated_at=now or utcnow(),
            transactions=transactions if options.include_transactions else [],
            categories=breakdown,
            top_categories=top_categories(breakdown, 5),
        )
        if options.include_clients:
            report.clients = self.client_service.list_all()
        if options.include_projects:
            report.projects = self.project_service.list_all()
        logger.info(
            f"report_gathered: period={period.slug} type={options.transaction_type} "
            f"transactions={len(transactions)} clients={len(report.clients)} "
            f"projects={len(report.projects)}"
        )
        return report


def has_content(report: ReportData) -> bool:
    return bool(report.transactions or report.clients or report.projects)


def sanitize_text(value: Optional[str], width: Optional[int] = None) -> str:
    """Strip diacritics and cut to ``width`` characters plus "..."."""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFD", value)
    text = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    if width is not None and len(text) > width:
        return text[:width] + "..."
    return text


def _kind_label(kind: object) -> str:
    return TYPE_LABELS.get(kind, str(getattr(kind, "value", kind)).title())  # type: ignore[arg-type]


def printable_context(report: ReportData) -> dict[str, object]:
    transactions = [
        {
            "date": txn.date.strftime("%d/%m/%y"),
            "description": sanitize_text(txn.description, 25),
            "category": sanitize_text(txn.category, 15).upper(),
            "type": txn.type.value,
            "type_label": _kind_label(txn.type),
            "amount": format_currency(txn.amount_cents),
        }
        for txn in report.transactions[:PDF_MAX_TRANSACTIONS]
    ]
    clients = [
        {
            "name": sanitize_text(client.name, 25),
            "email": sanitize_text(client.email, 20),
            "phone": sanitize_text(client.phone, 15),
        }
        for client in report.clients[:PDF_MAX_CLIENTS]
    ]
    projects = [
        {
            "title": sanitize_text(project.title, 25),
            "client": sanitize_text(project.client_name or "N/A", 20),
            "status": STATUS_LABELS.get(project.status, project.status.value.upper()),
            "value": format_currency(project.value_cents),
        }
        for project in report.projects[:PDF_MAX_PROJECTS]
    ]
    categories = [
        {
            "category": sanitize_text(str(row["category"])),
            "net": format_currency(int(row["net_cents"])),  # type: ignore[call-overload]
        }
        for row in report.top_categories
    ]
    totals = report.totals
    return {
        "title": "Financial Report",
        "generated_at": report.generated_at.strftime("%d/%m/%Y %H:%M"),
        "period": report.period.describe(),
        "totals": totals.as_dict(),
        "income": format_currency(totals.income_cents),
        "expenses": format_currency(totals.expense_cents),
        "balance": format_currency(totals.balance_cents),
        "balance_positive": totals.balance_cents >= 0,
        "transactions": transactions,
        "transactions_total": len(report.transactions),
        "top_categories": categories,
        "clients": clients,
        "clients_total": len(report.clients),
        "projects": projects,
        "projects_total": len(report.projects),
    }


_env: Optional[Environment] = None


def template_env() -> Environment:
    global _env
    if _env is None:
        _env = Environment(
            loader=FileSystemLoader(str(TEMPLATES_DIR)),
            autoescape=select_autoescape(["html"]),
        )
    return _env


def render_html(report: ReportData) -> str:
    return template_env().get_template("report.html").render(**printable_context(report))


PDF_CSS = """
    @page {
        size: A4;
        margin: 18mm 16mm 20mm 16mm;
        @bottom-center {
            content: "Page " counter(page) " of " counter(pages);
            color: #64748b;
            font-size: 9pt;
        }
    }
    :root {
        --text: #0f172a;
        --muted: #64748b;
        --border: #e2e8f0;
        --zebra: #f8fafc;
        --accent: #2563eb;
        --positive: #16a34a;
        --negative: #dc2626;
    }
    body {
        font-family: Helvetica, Arial, sans-serif;
        font-size: 10pt;
        color: var(--text);
        margin: 0;
    }
    .band {
        background: var(--accent);
        color: #ffffff;
        padding: 6mm 8mm;
    }
    .band h1 {
        margin: 0;
        font-size: 20pt;
    }
    .meta {
        color: var(--muted);
        margin: 3mm 0 6mm 0;
    }
    .summary {
        border: 1px solid var(--border);
        border-radius: 4px;
        padding: 4mm 6mm;
        margin-bottom: 8mm;
    }
    .summary td {
        padding: 1mm 4mm 1mm 0;
    }
    h2 {
        color: var(--accent);
        font-size: 13pt;
        margin: 6mm 0 3mm 0;
    }
    table.data {
        width: 100%;
        border-collapse: collapse;
        font-size: 8.5pt;
    }
    table.data th {
        background: var(--accent);
        color: #ffffff;
        text-align: left;
        padding: 2mm;
    }
    table.data td {
        padding: 1.6mm 2mm;
    }
    table.data tr:nth-child(even) td {
        background: var(--zebra);
    }
    .income, .positive {
        color: var(--positive);
    }
    .expense, .negative {
        color: var(--negative);
    }
    .note {
        color: var(--muted);
        font-size: 8pt;
    }
"""


def html_to_pdf(html: str) -> bytes:
    try:
        from weasyprint import CSS, HTML
        from weasyprint.text.fonts import FontConfiguration
    except Exception as exc:
        raise ExportError(
            "PDF export requires WeasyPrint system dependencies; install them for your OS and retry."
        ) from exc

    font_config = FontConfiguration()
    css = CSS(string=PDF_CSS, font_config=font_config)
    return HTML(string=html, base_url=str(TEMPLATES_DIR)).write_pdf(
        stylesheets=[css], font_config=font_config
    )


def render_pdf(report: ReportData) -> bytes:
    start_time = datetime.now()
    pdf_bytes = html_to_pdf(render_html(report))
    duration = (datetime.now() - start_time).total_seconds()
    logger.info(
        f"report_pdf_rendered: period={report.period.slug} "
        f"pdf_size_bytes={len(pdf_bytes)} pdf_duration={duration:.2f}s"
    )
    return pdf_bytes


HEADER_FONT = Font(bold=True, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="2563EB", end_color="2563EB", fill_type="solid")


def _write_sheet(wb: Workbook, title: str, headers: list[str], rows: list[list[object]]) -> None:
    ws = wb.create_sheet(title)
    ws.append(headers)
    for cell in ws[1]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center")
    for row in rows:
        ws.append(row)
        for cell in ws[ws.max_row]:
            # user text like "=SUM(A1)" stays text
            if isinstance(cell.value, str):
                cell.data_type = "s"
    for idx, header in enumerate(headers, start=1):
        cells = [row[idx - 1] for row in rows if len(row) >= idx]
        width = max([len(str(header))] + [len(str(value or "")) for value in cells])
        ws.column_dimensions[get_column_letter(idx)].width = min(width + 2, 60)


def _category_row(row: dict[str, object]) -> list[object]:
    return [
        row["category"],
        cents_to_decimal(int(row["income_cents"])),  # type: ignore[call-overload]
        cents_to_decimal(int(row["expense_cents"])),  # type: ignore[call-overload]
        cents_to_decimal(int(row["net_cents"])),  # type: ignore[call-overload]
        row["count"],
        (row["average_cents"] / 100).quantize(  # type: ignore[operator]
            Decimal("0.01"), rounding=ROUND_HALF_UP
        ),
    ]


def build_workbook(report: ReportData) -> Workbook:
    wb = Workbook()
    if "Sheet" in wb.sheetnames:
        wb.remove(wb["Sheet"])

    totals = report.totals
    summary: list[list[object]] = [
        ["Period", report.period.describe()],
        ["Generated at", report.generated_at.strftime("%d/%m/%Y %H:%M")],
        ["Total income", cents_to_decimal(totals.income_cents)],
        ["Total expenses", cents_to_decimal(totals.expense_cents)],
        ["Balance", cents_to_decimal(totals.balance_cents)],
        ["Transactions", totals.count],
        ["Clients", len(report.clients)],
        ["Projects", len(report.projects)],
    ]
    if report.top_categories:
        summary.append([])
        summary.append(["Top categories", "Net"])
        summary.extend(
            [row["category"], cents_to_decimal(int(row["net_cents"]))]  # type: ignore[call-overload]
            for row in report.top_categories
        )
    _write_sheet(wb, "Summary", ["Metric", "Value"], summary)

    if report.options.include_transactions and report.transactions:
        _write_sheet(
            wb,
            "Transactions",
            ["Date", "Description", "Category", "Type", "Amount", "Created at"],
            [
                [
                    txn.date.strftime("%d/%m/%Y"),
                    txn.description,
                    txn.category,
                    _kind_label(txn.type),
                    cents_to_decimal(txn.amount_cents),
                    txn.created_at.strftime("%d/%m/%Y %H:%M") if txn.created_at else "",
                ]
                for txn in report.transactions
            ],
        )
        if report.categories:
            _write_sheet(
                wb,
                "Category Analysis",
                ["Category", "Income", "Expenses", "Net", "Count", "Average"],
                [_category_row(row) for row in top_categories(report.categories, None)],
            )

    if report.options.include_clients and report.clients:
        _write_sheet(
            wb,
            "Clients",
            ["Name", "Email", "Phone", "Notes", "Created at"],
            [
                [
                    client.name,
                    client.email or "",
                    client.phone or "",
                    client.notes or "",
                    client.created_at.strftime("%d/%m/%Y %H:%M") if client.created_at else "",
                ]
                for client in report.clients
            ],
        )

    if report.options.include_projects and report.projects:
        _write_sheet(
            wb,
            "Projects",
            ["Title", "Client", "Status", "Value", "Deadline", "Description", "Created at"],
            [
                [
                    project.title,
                    project.client_name or "N/A",
                    STATUS_LABELS.get(project.status, project.status.value),
                    cents_to_decimal(project.value_cents),
                    project.deadline.strftime("%d/%m/%Y") if project.deadline else "",
                    project.description or "",
                    project.created_at.strftime("%d/%m/%Y %H:%M") if project.created_at else "",
                ]
                for project in report.projects
            ],
        )
    return wb


def workbook_bytes(report: ReportData) -> bytes:
    buffer = BytesIO()
    build_workbook(report).save(buffer)
    return buffer.getvalue()


def export_filename(report: ReportData, fmt: str) -> str:
    return f"ledger-report-{report.generated_at.strftime('%Y-%m-%d')}.{fmt}"


def render_report(report: ReportData, fmt: str) -> bytes:
    if fmt not in EXPORT_FORMATS:
        raise ExportError(f"Unsupported export format: {fmt}")
    try:
        if fmt == "pdf":
            return render_pdf(report)
        return workbook_bytes(report)
    except ExportError:
        raise
    except Exception as exc:
        logger.exception(f"report_render_failed: format={fmt}")
        raise ExportError(f"Could not render {fmt} report") from exc


def export_report(
    report: ReportData, fmt: str, export_dir: Optional[Path] = None
) -> Path:
    """Render ``report`` and write it under ``export_dir``.

    The file appears complete or not at all: bytes go to a temporary file in
    the same directory which is then renamed over any same-day report.
    """
    payload = render_report(report, fmt)
    target_dir = Path(export_dir or get_settings().export_dir)
    target = target_dir / export_filename(report, fmt)
    tmp_path = None
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            dir=target_dir, prefix=".ledger-report-", suffix=".part", delete=False
        ) as handle:
            tmp_path = handle.name
            handle.write(payload)
        os.replace(tmp_path, target)
    except OSError as exc:
        if tmp_path and os.path.exists(tmp_path):
            os.unlink(tmp_path)
        logger.error(f"report_write_failed: path={target} error={exc.__class__.__name__}")
        raise ExportError("Could not write report file") from exc
    logger.info(f"report_exported: path={target} size_bytes={len(payload)}")
    return target
