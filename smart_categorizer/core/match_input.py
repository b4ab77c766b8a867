"""
Match Input

Rules can be evaluated against raw text, an amount, a timestamp or a whole
transaction. The value is resolved once into one of the MatchInput variants
so matchers never have to guess what they were given.
"""
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional, Union


@dataclass(frozen=True)
class Transaction:
    """Read-only transaction record consumed by the engine"""
    merchant_name: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[Decimal] = None
    transaction_date: Optional[datetime] = None
    id: Optional[Any] = None


@dataclass(frozen=True)
class TextInput:
    text: str


@dataclass(frozen=True)
class AmountInput:
    amount: Decimal


@dataclass(frozen=True)
class TimestampInput:
    timestamp: datetime


@dataclass(frozen=True)
class FieldsInput:
    merchant: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[Decimal] = None
    timestamp: Optional[datetime] = None


MatchInput = Union[TextInput, AmountInput, TimestampInput, FieldsInput]

_MERCHANT_KEYS = ('merchant_name', 'merchant')
_DESCRIPTION_KEYS = ('description',)
_AMOUNT_KEYS = ('amount',)
_TIMESTAMP_KEYS = ('transaction_date', 'timestamp')


def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert a number or numeric string to Decimal, None if not numeric"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return None
        return result if result.is_finite() else None
    return None


def to_datetime(value: Any) -> Optional[datetime]:
    """Convert a datetime, date or ISO-8601 string to datetime, None if unparsable"""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    return None


def _first(source: Mapping, keys) -> Any:
    for key in keys:
        if source.get(key) is not None:
            return source[key]
    return None


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def fields_from_mapping(source: Mapping) -> FieldsInput:
    return FieldsInput(
        merchant=_text(_first(source, _MERCHANT_KEYS)),
        description=_text(_first(source, _DESCRIPTION_KEYS)),
        amount=to_decimal(_first(source, _AMOUNT_KEYS)),
        timestamp=to_datetime(_first(source, _TIMESTAMP_KEYS)),
    )


def fields_from_record(record: Any) -> FieldsInput:
    return FieldsInput(
        merchant=_text(getattr(record, 'merchant_name', None)),
        description=_text(getattr(record, 'description', None)),
        amount=to_decimal(getattr(record, 'amount', None)),
        timestamp=to_datetime(getattr(record, 'transaction_date', None)),
    )


def to_match_input(value: Any) -> Optional[MatchInput]:
    """
    Resolve an arbitrary value into a MatchInput variant

    Args:
        value: str, number, datetime/date, mapping, transaction-like object
               or an already resolved MatchInput

    Returns:
        The MatchInput, or None for unsupported values
    """
    if value is None:
        return None
    if isinstance(value, (TextInput, AmountInput, TimestampInput, FieldsInput)):
        return value
    if isinstance(value, str):
        return TextInput(value)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        amount = to_decimal(value)
        return AmountInput(amount) if amount is not None else None
    if isinstance(value, (datetime, date)):
        return TimestampInput(to_datetime(value))
    if isinstance(value, Mapping):
        return fields_from_mapping(value)
    if hasattr(value, 'merchant_name') or hasattr(value, 'description'):
        return fields_from_record(value)
    return None
