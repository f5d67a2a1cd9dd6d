"""
Discriminated results for callers that prefer values over exceptions.

    result = lifecycle.attempt("verify_payment", booking_id, payment_id, order_id, signature)
    if result.ok:
        booking = result.value
    else:
        log_failure(result.error.status_code, result.error.message)
"""
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

from counselbook.lib.errors import AppException

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    error: AppException

    @property
    def ok(self) -> bool:
        return False

    @property
    def kind(self) -> str:
        """Exception class name, e.g. ``NotFoundException``."""
        return type(self.error).__name__

    def unwrap(self) -> Any:
        raise self.error


Result = Union[Ok[T], Err]
