from datetime import date
from typing import Annotated, Any, ClassVar, Literal, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

from aggregation import normalize_category
from models import ProjectStatus, ScheduledStatus, TransactionType
from money import parse_amount

# *_cents fields take whole cents only; "1.500,00" style input goes in `amount`
Cents = Annotated[int, Field(strict=True, ge=0)]
Category = Annotated[str, BeforeValidator(normalize_category), Field(max_length=60)]


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        return value.strip() or None
    return value


OptionalText = Annotated[Optional[str], BeforeValidator(_blank_to_none)]


class AmountInput(BaseModel):
    """Accepts money either as integer cents or as a typed amount like "1.500,00"."""

    amount_field: ClassVar[str] = "amount"
    cents_field: ClassVar[str] = "amount_cents"

    @model_validator(mode="before")
    @classmethod
    def _amount_to_cents(cls, data: Any) -> Any:
        if not isinstance(data, dict) or cls.amount_field not in data:
            return data
        data = dict(data)
        raw = data.pop(cls.amount_field)
        if data.get(cls.cents_field) is not None:
            raise ValueError(f"Give either {cls.amount_field} or {cls.cents_field}, not both")
        if raw == "" or isinstance(raw, bool) or not isinstance(raw, (str, int, float)):
            raise ValueError("Amount is required")
        data[cls.cents_field] = parse_amount(raw)
        return data


class ClientIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=120)
    email: OptionalText = Field(default=None, max_length=200)
    phone: OptionalText = Field(default=None, max_length=40)
    notes: OptionalText = None


class ProjectIn(AmountInput):
    model_config = ConfigDict(str_strip_whitespace=True)
    amount_field: ClassVar[str] = "value"
    cents_field: ClassVar[str] = "value_cents"

    title: str = Field(..., min_length=1, max_length=200)
    description: OptionalText = None
    value_cents: Cents
    status: ProjectStatus = ProjectStatus.in_progress
    deadline: Optional[date] = None
    client_id: Optional[int] = None


class TransactionIn(AmountInput):
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: Cents
    type: TransactionType
    category: Category
    date: date


class ScheduledTransactionIn(AmountInput):
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: Cents
    type: TransactionType
    category: Category
    scheduled_date: date


class ScheduledStatusIn(BaseModel):
    status: ScheduledStatus


class ExportOptions(BaseModel):
    period: Literal["all", "month", "last3months", "year", "custom"] = "all"
    # kept as raw strings: unparseable custom dates widen the period instead
    # of failing the export
    start: Optional[str] = None
    end: Optional[str] = None
    transaction_type: Literal["all", "income", "expense"] = "all"
    include_transactions: bool = True
    include_clients: bool = True
    include_projects: bool = True
