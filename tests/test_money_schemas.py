import pytest
from pydantic import ValidationError

from errors import (
    ExportError,
    LedgerValidationError,
    PartialReconciliationError,
    StoreError,
    notice_for,
)
from money import format_currency, parse_amount
from schemas import ClientIn, ExportOptions, ProjectIn, TransactionIn


@pytest.mark.parametrize(
    "raw, cents",
    [
        ("R$ 1.500,00", 150_000),
        ("1,500.50", 150_050),
        ("1500.5", 150_050),
        ("80", 8_000),
        ("0,005", 1),
        (12.34, 1_234),
    ],
)
def test_parse_amount(raw, cents):
    assert parse_amount(raw) == cents


@pytest.mark.parametrize("raw", ["abc", "", "NaN", "-10"])
def test_parse_amount_rejects(raw):
    with pytest.raises(ValueError):
        parse_amount(raw)


def test_parse_amount_allows_negative_when_asked():
    assert parse_amount("-10", allow_negative=True) == -1_000


def test_format_currency():
    assert format_currency(150_000) == "R$ 1 500,00"
    assert format_currency(-4_050) == "-R$ 40,50"


def test_transaction_in_coerces_amount_and_category():
    data = TransactionIn(
        description=" Rent ",
        amount="1.500,00",
        type="expense",
        category=" aluguel ",
        date="2024-03-01",
    )
    assert data.description == "Rent"
    assert data.amount_cents == 150_000
    assert data.category == "ALUGUEL"

    blank = TransactionIn(
        description="Misc", amount_cents=100, type="income", category="  ", date="2024-03-01"
    )
    assert blank.category == "OTHER"


def test_transaction_in_rejects_bad_amounts():
    for amount in ["abc", -5, None]:
        with pytest.raises(ValidationError):
            TransactionIn(
                description="x",
                amount_cents=amount,
                type="income",
                category="a",
                date="2024-03-01",
            )


def test_cents_fields_take_whole_cents_only():
    assert ProjectIn(title="Logo", value_cents=1500).value_cents == 1500
    for raw in [1500.0, "1500", True]:
        with pytest.raises(ValidationError):
            ProjectIn(title="Logo", value_cents=raw)


def test_typed_amounts_go_through_the_amount_field():
    for raw in [1500, 1500.0, "1500", "1.500,00"]:
        assert ProjectIn(title="Logo", value=raw).value_cents == 150_000
    with pytest.raises(ValidationError):
        ProjectIn(title="Logo", value="15", value_cents=1500)


def test_client_blank_optional_fields_become_none():
    client = ClientIn(name="Acme", email="  ", phone="")
    assert client.email is None
    assert client.phone is None


def test_export_options_defaults():
    options = ExportOptions()
    assert options.period == "all"
    assert options.transaction_type == "all"
    assert options.include_transactions and options.include_clients
    assert options.include_projects
    with pytest.raises(ValidationError):
        ExportOptions(period="decade")


def test_notice_for_each_failure_kind():
    assert notice_for(LedgerValidationError("Client not found")).title == "Client not found"
    partial = notice_for(PartialReconciliationError("x", entity=None, event_id=1))
    assert partial.level == "warning"
    assert notice_for(StoreError("db locked")).title == "Could not save changes"
    assert notice_for(ExportError("x")).title == "Could not export report"
    assert notice_for(KeyError("x")).level == "error"
