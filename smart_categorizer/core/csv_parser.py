"""
CSV Parser for transaction exports

Reads a CSV of transactions into Transaction records. Column names are
matched case-insensitively; the first present alias wins:
- merchant:    Merchant, Merchant Name, Payee
- description: Description, Memo
- amount:      Amount
- date:        Transaction Date, Date, Posting Date, Timestamp
- id:          Id, Transaction Id
"""
import csv
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, List, Optional

from .match_input import Transaction

logger = logging.getLogger(__name__)

COLUMN_ALIASES = {
    'merchant_name': ('merchant', 'merchant name', 'merchant_name', 'payee'),
    'description': ('description', 'memo'),
    'amount': ('amount',),
    'transaction_date': ('transaction date', 'transaction_date', 'date', 'posting date', 'timestamp'),
    'id': ('id', 'transaction id', 'transaction_id'),
}

DATE_FORMATS = [
    '%m/%d/%Y',      # 01/30/2025
    '%m/%d/%y',      # 1/30/23
    '%Y-%m-%d',      # 2025-01-30
]


def parse_date(date_str: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 or US-style date/time string"""
    if not date_str or not date_str.strip():
        return None
    date_str = date_str.strip()

    try:
        return datetime.fromisoformat(date_str)
    except ValueError:
        pass

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(date_str, fmt)
        except ValueError:
            continue

    raise ValueError(f"Could not parse date: {date_str}")


def parse_amount(amount_str: Optional[str]) -> Optional[Decimal]:
    """Parse amount string to Decimal"""
    if not amount_str or not amount_str.strip():
        return None

    # Remove dollar signs, commas
    cleaned = amount_str.replace('$', '').replace(',', '').strip()
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        raise ValueError(f"Could not parse amount: {amount_str}")


def _column_map(fieldnames: List[str]) -> Dict[str, str]:
    by_lower = {name.strip().lower(): name for name in fieldnames if name}
    mapping = {}
    for field, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            if alias in by_lower:
                mapping[field] = by_lower[alias]
                break
    return mapping


def parse_transactions_csv(csv_path: Path) -> List[Transaction]:
    """
    Parse a transactions CSV

    Args:
        csv_path: Path to CSV file

    Returns:
        List of Transaction records, in file order

    Raises:
        ValueError: unparsable date/amount or no usable columns
    """
    transactions = []

    with open(csv_path, 'r', encoding='utf-8') as f:
        reader = csv.DictReader(f)
        columns = _column_map(reader.fieldnames or [])
        if 'merchant_name' not in columns and 'description' not in columns:
            raise ValueError(f"{csv_path} has no merchant or description column")

        for i, row in enumerate(reader, 1):
            def value(field):
                column = columns.get(field)
                raw = row.get(column) if column else None
                return raw.strip() if raw and raw.strip() else None

            try:
                transactions.append(Transaction(
                    merchant_name=value('merchant_name'),
                    description=value('description'),
                    amount=parse_amount(value('amount')),
                    transaction_date=parse_date(value('transaction_date')),
                    id=value('id') or i,
                ))
            except ValueError as e:
                raise ValueError(f"Row {i}: {e}")

    logger.info("Parsed %d transactions from %s", len(transactions), csv_path)
    return transactions
