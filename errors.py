from typing import Optional


class LedgerError(ValueError):
    """Base class for every error the ledger services raise on purpose."""


class ValidationError(LedgerError):
    """The intent is rejected before anything is written."""


class InvalidAmountError(ValidationError):
    def __init__(self, amount: object) -> None:
        super().__init__("Amount must be a positive whole number")
        self.amount = amount


class MissingFieldError(ValidationError):
    def __init__(self, field: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Missing required field: {field}")
        self.field = field


class SelfTransferError(ValidationError):
    def __init__(self) -> None:
        super().__init__("Source and target account are the same")


class DateBeforeAccountStartError(ValidationError):
    def __init__(self, account_id: int, account_name: str, role: str, start) -> None:
        super().__init__(
            f"Account '{account_name}' ({role}) starts on {start.isoformat()}; "
            "earlier dates cannot be recorded"
        )
        self.account_id = account_id
        self.account_name = account_name
        self.role = role
        self.start = start


class ReferenceNotFoundError(LedgerError):
    """A referenced account, category, transaction or rule does not exist."""

    def __init__(self, kind: str, ref_id: object) -> None:
        super().__init__(f"{kind} not found")
        self.kind = kind
        self.ref_id = ref_id


class CommitError(LedgerError):
    """The store rejected the write; nothing was persisted."""

    def __init__(self, message: str = "Save failed, try again") -> None:
        super().__init__(message)
