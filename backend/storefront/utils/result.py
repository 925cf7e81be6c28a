from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar, Union

T = TypeVar("T")

# Err kinds
NOT_FOUND = "not_found"
CONFLICT = "conflict"
STORE_ERROR = "store_error"
INVALID = "invalid"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: str
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return False

    @property
    def value(self) -> Any:
        raise ValueError(f"Err({self.kind}) has no value: {self.detail}")


Result = Union[Ok[T], Err]


@dataclass(frozen=True)
class UpdateCount:
    matched: int
    modified: int
