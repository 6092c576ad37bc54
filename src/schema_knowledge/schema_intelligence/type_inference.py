"""
Column type inference from sampled result values

Classifies a handful of values from one result column into one of the
coarse column types, in strict precedence order:
integer > number > boolean > date > string.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, List, Optional, Sequence

from .models import ColumnType
from ..utils import TypeInferenceError, get_logger

logger = get_logger(__name__)

DEFAULT_MAX_SAMPLES = 10
DEFAULT_MAX_EXAMPLES = 5

BOOLEAN_LITERALS = {"true", "false"}

DATE_FORMATS = [
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%m/%d/%Y %H:%M:%S",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%a, %d %b %Y %H:%M:%S %Z",
    "%a %b %d %Y",
    "%Y-%m",
]


@dataclass
class TypeInference:
    """Result of classifying one column's samples"""
    column_type: ColumnType
    is_nullable: bool
    examples: List[str] = field(default_factory=list)
    sample_size: int = 0


def _is_null(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, float) and math.isnan(value)


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def is_integer_value(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    number = _as_number(value)
    return number is not None and math.isfinite(number) and number.is_integer()


def is_number_value(value: Any) -> bool:
    number = _as_number(value)
    return number is not None and math.isfinite(number)


def is_boolean_value(value: Any) -> bool:
    if isinstance(value, bool):
        return True
    return isinstance(value, str) and value.strip().lower() in BOOLEAN_LITERALS


def is_date_value(value: Any) -> bool:
    if isinstance(value, (datetime, date)):
        return True
    if not isinstance(value, str):
        return False

    text = value.strip()
    if not text:
        return False
    try:
        datetime.fromisoformat(text.replace("Z", "+00:00"))
        return True
    except ValueError:
        pass

    for fmt in DATE_FORMATS:
        try:
            datetime.strptime(text, fmt)
            return True
        except ValueError:
            continue
    return False


def classify_values(values: Sequence[Any]) -> ColumnType:
    """Classify non-null values; an empty sequence is unknown"""
    if not values:
        return ColumnType.UNKNOWN
    if all(is_integer_value(v) for v in values):
        return ColumnType.INTEGER
    if all(is_number_value(v) for v in values):
        return ColumnType.NUMBER
    if all(is_boolean_value(v) for v in values):
        return ColumnType.BOOLEAN
    if all(is_date_value(v) for v in values):
        return ColumnType.DATE
    return ColumnType.STRING


def _example_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class TypeInferencer:
    """
    Infers a coarse type, nullability and example values for a column

    An empty or all-null sample yields UNKNOWN; the merger never lets
    UNKNOWN overwrite a type that is already known.
    """

    def __init__(
        self,
        max_samples: int = DEFAULT_MAX_SAMPLES,
        max_examples: int = DEFAULT_MAX_EXAMPLES,
    ):
        self.max_samples = max_samples
        self.max_examples = max_examples

    def classify(self, values: Sequence[Any]) -> ColumnType:
        """Classify non-null values, raising TypeInferenceError if a predicate fails"""
        try:
            return classify_values(values)
        except Exception as e:
            raise TypeInferenceError(
                f"Could not classify {len(values)} sampled value(s): {e}",
                original_error=e,
            ) from e

    def infer(self, values: Iterable[Any]) -> TypeInference:
        samples = list(values)[: self.max_samples]
        non_null = [v for v in samples if not _is_null(v)]
        is_nullable = len(non_null) < len(samples)

        try:
            column_type = self.classify(non_null)
        except TypeInferenceError as e:
            logger.warning(f"{e.message}, falling back to unknown")
            column_type = ColumnType.UNKNOWN

        examples: List[str] = []
        for value in non_null:
            text = _example_text(value)
            if text not in examples:
                examples.append(text)
            if len(examples) >= self.max_examples:
                break

        return TypeInference(
            column_type=column_type,
            is_nullable=is_nullable,
            examples=examples,
            sample_size=len(samples),
        )

    def infer_column(self, rows: Sequence[Sequence[Any]], index: int) -> TypeInference:
        """Infer from one column (by position); a row too short to have it counts as null"""
        values = []
        for row in rows[: self.max_samples]:
            if row is None or index >= len(row):
                values.append(None)
                continue
            values.append(row[index])
        return self.infer(values)


def infer_column_type(values: Iterable[Any]) -> TypeInference:
    """Infer type information for a column using default limits"""
    return TypeInferencer().infer(values)
