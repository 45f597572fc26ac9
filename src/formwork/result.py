"""Explicit success/failure values for geometry calls."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, Tuple, Type, TypeVar, Union

from formwork.errors import FormworkError, GeometryError, ModelUnavailableError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    error: FormworkError

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


def unwrap_or(result: Result, default: T) -> T:
    if isinstance(result, Ok):
        return result.value
    return default


def capture(
    fn: Callable[..., T],
    *args,
    error_cls: Type[FormworkError] = GeometryError,
    message: str = "",
    catch: Tuple[Type[BaseException], ...] = (Exception,),
    **kwargs,
) -> Result:
    """Run ``fn`` and wrap its return value or raised exception in a Result.

    Library exceptions are converted to ``error_cls``; a ``FormworkError``
    raised inside ``fn`` is passed through unchanged. ``ModelUnavailableError``
    is never captured.
    """
    try:
        return Ok(fn(*args, **kwargs))
    except ModelUnavailableError:
        raise
    except FormworkError as exc:
        return Err(exc)
    except catch as exc:
        prefix = f"{message}: " if message else ""
        return Err(error_cls(f"{prefix}{type(exc).__name__}: {exc}"))
