from datetime import date, datetime
from io import BytesIO

import pytest
from openpyxl import load_workbook
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

import exports
from database import Base
from errors import ExportError
from exports import (
    PDF_MAX_TRANSACTIONS,
    ReportService,
    build_workbook,
    export_report,
    has_content,
    printable_context,
    render_html,
    sanitize_text,
)
from models import ProjectStatus, TransactionType
from reconciliation import ReconciliationService
from schemas import ClientIn, ExportOptions, ProjectIn, TransactionIn
from services import ClientService, TransactionService

TODAY = date(2024, 3, 15)
NOW = datetime(2024, 3, 15, 9, 30)


def _seed(session: Session, count: int = 3) -> None:
    txns = TransactionService(session)
    for i in range(count):
        txns.create(
            TransactionIn(
                description=f"Design sprint {i}",
                amount_cents=10_000 + i,
                type=TransactionType.income,
                category="projects",
                date=date(2024, 3, 1 + (i % 28)),
            )
        )
    txns.create(
        TransactionIn(
            description="Aluguel março",
            amount_cents=4_000,
            type=TransactionType.expense,
            category="aluguel",
            date=date(2024, 3, 2),
        )
    )
    client = ClientService(session).create(
        ClientIn(name="José Conceição Ferreira da Silva", email="jose@example.com")
    )
    ReconciliationService(session).save_project(
        ProjectIn(title="Logo", value_cents=80_000, client_id=client.id),
        today=TODAY,
    )


def _gather(session: Session, **options) -> exports.ReportData:
    return ReportService(session).gather(ExportOptions(**options), today=TODAY, now=NOW)


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def test_totals_agree_between_pdf_and_workbook():
    with _session() as session:
        _seed(session)
        report = _gather(session, period="month")

        context = printable_context(report)
        ws = build_workbook(report)["Summary"]
        values = {row[0].value: row[1].value for row in ws.iter_rows(min_row=2)}

        assert context["totals"]["income_cents"] == 30_003
        assert float(values["Total income"]) * 100 == pytest.approx(30_003)
        assert float(values["Total expenses"]) * 100 == pytest.approx(4_000)
        assert float(values["Balance"]) * 100 == pytest.approx(
            context["totals"]["balance_cents"]
        )
        assert values["Transactions"] == context["totals"]["count"] == 4
        assert values["Clients"] == len(context["clients"]) == 1
        assert values["Projects"] == len(context["projects"]) == 1


def test_workbook_lists_categories_by_net_like_the_pdf():
    with _session() as session:
        txns = TransactionService(session)
        for category, kind, cents in [
            ("low", TransactionType.expense, 50_000),
            ("mid", TransactionType.income, 10_000),
            ("hi", TransactionType.income, 90_000),
        ]:
            txns.create(
                TransactionIn(
                    description=category,
                    amount_cents=cents,
                    type=kind,
                    category=category,
                    date=TODAY,
                )
            )
        report = _gather(session)
        pdf_order = [row["category"] for row in printable_context(report)["top_categories"]]
        wb = build_workbook(report)

        analysis = [row[0].value for row in wb["Category Analysis"].iter_rows(min_row=2)]
        summary = [row[0].value for row in wb["Summary"].iter_rows(min_row=2)]
        top_block = summary[summary.index("Top categories") + 1 :]

        assert pdf_order == ["HI", "MID", "LOW"]
        assert analysis == pdf_order
        assert top_block == pdf_order


def test_type_filter_scopes_totals_and_rows():
    with _session() as session:
        _seed(session)
        report = _gather(session, transaction_type="expense")

        assert [t.description for t in report.transactions] == ["Aluguel março"]
        assert report.totals.income_cents == 0
        assert report.totals.expense_cents == 4_000


def test_printable_context_caps_and_sanitises():
    with _session() as session:
        _seed(session, count=25)
        report = _gather(session)
        context = printable_context(report)

        assert len(report.transactions) == 26
        assert len(context["transactions"]) == PDF_MAX_TRANSACTIONS
        assert context["transactions_total"] == 26
        # newest first
        assert report.transactions[0].date >= report.transactions[-1].date

        client = context["clients"][0]
        assert client["name"] == "Jose Conceicao Ferreira d..."
        project = context["projects"][0]
        assert project["status"] == "IN PROGRESS"
        assert project["client"] == "Jose Conceicao Ferre..."

        html = render_html(report)
        assert "Showing 20 of 26 transactions." in html
        assert "Financial Report" in html


def test_sanitize_text():
    assert sanitize_text("Ação de marketing para cliente", 25) == (
        "Acao de marketing para cl..."
    )
    assert sanitize_text("Café", 15) == "Cafe"
    assert sanitize_text(None, 10) == ""


def test_workbook_sheets_follow_inclusion_flags():
    with _session() as session:
        _seed(session)
        full = build_workbook(_gather(session))
        assert full.sheetnames == [
            "Summary",
            "Transactions",
            "Category Analysis",
            "Clients",
            "Projects",
        ]

        trimmed = build_workbook(
            _gather(session, include_clients=False, include_transactions=False)
        )
        assert trimmed.sheetnames == ["Summary", "Projects"]


def test_workbook_keeps_formula_like_text_as_text():
    with _session() as session:
        TransactionService(session).create(
            TransactionIn(
                description="=HYPERLINK(\"http://x\")",
                amount_cents=100,
                type=TransactionType.expense,
                category="misc",
                date=TODAY,
            )
        )
        buffer = BytesIO()
        build_workbook(_gather(session)).save(buffer)
        buffer.seek(0)

        ws = load_workbook(buffer)["Transactions"]
        cell = ws["B2"]
        assert cell.value == "=HYPERLINK(\"http://x\")"
        assert cell.data_type == "s"


def test_has_content():
    with _session() as session:
        assert not has_content(_gather(session))
        _seed(session)
        assert has_content(_gather(session))
        assert not has_content(
            _gather(
                session,
                include_transactions=False,
                include_clients=False,
                include_projects=False,
            )
        )


def test_export_report_writes_dated_file_and_overwrites(tmp_path, monkeypatch):
    monkeypatch.setattr(exports, "html_to_pdf", lambda html: b"%PDF-1.7 fake")
    with _session() as session:
        _seed(session)
        report = _gather(session)

        first = export_report(report, "pdf", tmp_path)
        second = export_report(report, "pdf", tmp_path)
        xlsx = export_report(report, "xlsx", tmp_path)

        assert first == second == tmp_path / "ledger-report-2024-03-15.pdf"
        assert first.read_bytes() == b"%PDF-1.7 fake"
        assert xlsx.name == "ledger-report-2024-03-15.xlsx"
        assert sorted(p.name for p in tmp_path.iterdir()) == [
            "ledger-report-2024-03-15.pdf",
            "ledger-report-2024-03-15.xlsx",
        ]


def test_failed_render_leaves_no_file(tmp_path, monkeypatch):
    def broken(html):
        raise RuntimeError("fonts missing")

    monkeypatch.setattr(exports, "html_to_pdf", broken)
    with _session() as session:
        _seed(session)
        with pytest.raises(ExportError):
            export_report(_gather(session), "pdf", tmp_path)
    assert list(tmp_path.iterdir()) == []


def test_failed_write_leaves_no_partial_file(tmp_path, monkeypatch):
    def refuse(src, dst):
        raise OSError("read-only")

    monkeypatch.setattr(exports.os, "replace", refuse)
    with _session() as session:
        _seed(session)
        with pytest.raises(ExportError):
            export_report(_gather(session), "xlsx", tmp_path)
    assert list(tmp_path.iterdir()) == []


def test_unknown_format_is_rejected(tmp_path):
    with _session() as session:
        with pytest.raises(ExportError):
            export_report(_gather(session), "csv", tmp_path)


def test_completed_project_income_shows_up_in_report():
    with _session() as session:
        ReconciliationService(session).save_project(
            ProjectIn(title="Landing page", value_cents=150_000, status=ProjectStatus.completed),
            today=TODAY,
        )
        report = _gather(session, period="month")
        assert report.totals.income_cents == 150_000
        assert report.top_categories[0]["category"] == "PROJECTS"
