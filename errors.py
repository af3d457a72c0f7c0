from dataclasses import dataclass
from typing import Optional


class LedgerValidationError(ValueError):
    """Input rejected before anything was written."""


class StoreError(RuntimeError):
    """The record store failed; the operation was not applied."""


class PartialReconciliationError(RuntimeError):
    """The primary entity was saved but its derived ledger entry was not."""

    def __init__(self, message: str, *, entity: object, event_id: Optional[int]) -> None:
        super().__init__(message)
        self.entity = entity
        self.event_id = event_id


class ExportError(RuntimeError):
    pass


@dataclass(frozen=True)
class Notice:
    level: str
    title: str
    description: str = ""

    def as_dict(self) -> dict[str, str]:
        return {
            "level": self.level,
            "title": self.title,
            "description": self.description,
        }


def notice_for(exc: BaseException) -> Notice:
    if isinstance(exc, PartialReconciliationError):
        return Notice(
            "warning",
            "Saved, but the ledger entry could not be recorded",
            "Check the transaction history; the pending entry can be replayed.",
        )
    if isinstance(exc, LedgerValidationError):
        return Notice("error", str(exc))
    if isinstance(exc, StoreError):
        return Notice("error", "Could not save changes", "Try again later.")
    if isinstance(exc, ExportError):
        return Notice("error", "Could not export report", "Try again later.")
    return Notice("error", "Something went wrong", "Try again later.")
