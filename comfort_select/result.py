"""Explicit success/failure results for loaders that fall back to defaults.

Callers that only need a safe default can use :meth:`Ok.unwrap_or` /
:meth:`Err.unwrap_or`; callers (and tests) that care *why* something failed
can inspect :attr:`Err.reason`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class FailureReason(StrEnum):
    not_found = "not_found"
    io_error = "io_error"
    parse_failed = "parse_failed"
    validation_failed = "validation_failed"


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value


@dataclass(frozen=True, slots=True)
class Err:
    reason: FailureReason
    detail: str

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self) -> Any:
        raise ValueError(f"{self.reason}: {self.detail}")

    def unwrap_or(self, default: T) -> T:
        return default


Result = Ok[T] | Err


def read_text_file(path: str | Path) -> Result[str]:
    """Read a UTF-8 text file, distinguishing a missing file from other I/O errors."""
    resolved = Path(path).resolve()
    try:
        return Ok(resolved.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return Err(FailureReason.not_found, f"{resolved} does not exist")
    except OSError as exc:
        return Err(FailureReason.io_error, f"failed to read {resolved}: {exc}")


def load_json_file(path: str | Path) -> Result[Any]:
    raw = read_text_file(path)
    if isinstance(raw, Err):
        return raw
    return parse_json(raw.value, source=str(Path(path).resolve()))


def parse_json(raw: str, *, source: str = "<string>") -> Result[Any]:
    try:
        return Ok(json.loads(raw))
    except json.JSONDecodeError as exc:
        return Err(FailureReason.parse_failed, f"JSON parse error ({source}): {exc}")


__all__ = [
    "Err",
    "FailureReason",
    "Ok",
    "Result",
    "load_json_file",
    "parse_json",
    "read_text_file",
]
