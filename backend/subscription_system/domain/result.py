"""Tagged result for billing operations.

Callers pattern-match on ``Success`` / ``Failure`` instead of guessing whether
a returned string is a URL or an error message.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

from subscription_system.core.exceptions import SubscriptionSystemError

T = TypeVar("T")


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True)
class Failure:
    error: SubscriptionSystemError

    @property
    def code(self) -> str:
        return self.error.code

    @property
    def message(self) -> str:
        return str(self.error)


Result = Success[T] | Failure
