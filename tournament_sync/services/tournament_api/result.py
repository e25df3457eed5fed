"""Explicit lookup results for the tournament API.

Every client method returns either ``Found(value)`` or ``NotFound(...)``;
callers branch on the result instead of catching a not-found exception:

    result = await client.get_tournament_details(code)
    if isinstance(result, NotFound):
        logger.warning(f"Tournament {code} not found")
        return
    tournament = result.value
"""
from dataclasses import dataclass
from typing import Generic, TypeVar, Union, Optional

T = TypeVar("T")


@dataclass(frozen=True)
class Found(Generic[T]):
    value: T

    @property
    def found(self) -> bool:
        return True


@dataclass(frozen=True)
class NotFound:
    resource: str
    code: Optional[str] = None

    @property
    def found(self) -> bool:
        return False

    def __str__(self) -> str:
        return f"{self.resource} not found" + (f": {self.code}" if self.code else "")


Lookup = Union[Found[T], NotFound]


def unwrap_or(result: "Lookup", default):
    """Value of a Found, or ``default`` for NotFound."""
    return result.value if isinstance(result, Found) else default
