from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union


def parse_amount(value: Union[str, int, float, Decimal], *, allow_negative: bool = False) -> int:
    """Parse a user-entered money amount into integer cents.

    Accepts plain numbers as well as strings with currency symbols and either
    decimal separator ("R$ 1.500,00", "1500.5", "80").
    """
    if isinstance(value, bool):
        raise ValueError("Invalid amount")
    if isinstance(value, (int, float, Decimal)):
        amount = Decimal(str(value))
    else:
        clean = (
            value.strip()
            .replace("R$", "")
            .replace("€", "")
            .replace("$", "")
            .replace(" ", "")
        )
        if "," in clean and "." in clean and clean.rfind(",") < clean.rfind("."):
            clean = clean.replace(",", "")
        clean = clean.replace(",", ".")
        if clean.count(".") > 1:
            parts = clean.split(".")
            clean = "".join(parts[:-1]) + "." + parts[-1]
        try:
            amount = Decimal(clean)
        except InvalidOperation as exc:
            raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / Decimal(100)).quantize(Decimal("0.01"))


def format_currency(cents: int, symbol: str = "R$") -> str:
    sign = "-" if cents < 0 else ""
    body = f"{abs(cents) / 100:,.2f}".replace(",", " ").replace(".", ",")
    return f"{sign}{symbol} {body}"
