"""
Retail transaction transforms.

Invoice dates arrive as "M/D/YY H:MM" (e.g. "12/1/10 8:26"). They are
normalized to an ISO date, a zero-padded time and a parsed timestamp using
the same padding rules as the SQL lpad() function, so a two digit year "10"
becomes "2010" and a time "8:26" becomes "08:26".
"""

from datetime import datetime
from typing import Any, Iterable

from livetables.core.models import Record, freeze_record
from livetables.core.rules import FAILED_CONSTRAINTS_FIELD

SOURCE_FIELDS = (
    "InvoiceNo",
    "StockCode",
    "Description",
    "Quantity",
    "InvoiceDate",
    "UnitPrice",
    "CustomerID",
    "Country",
)

TRANSACTION_FIELDS = (
    "InvoiceNo",
    "StockCode",
    "Description",
    "Quantity",
    "InvoiceDate",
    "InvoiceTime",
    "InvoiceDatetime",
    "UnitPrice",
    "CustomerID",
    "Country",
)

RAW_INVOICE_DATE_FIELD = "RawInvoiceDate"

# Quarantine candidates are evaluated in the same shape as quality_retail rows
QUARANTINE_CANDIDATE_FIELDS = TRANSACTION_FIELDS + (RAW_INVOICE_DATE_FIELD,)

# Committed quarantine rows: raw columns, parsed timestamp and violated constraint names
QUARANTINE_FIELDS = SOURCE_FIELDS + ("InvoiceDatetime", FAILED_CONSTRAINTS_FIELD)

_DATETIME_FORMAT = "%Y-%m-%d %H:%M"


def spark_lpad(value: str | None, length: int, pad: str) -> str | None:
    """
    Left-pad a string to length by repeating pad.

    Longer strings are truncated to length; None and an empty pad with a short
    value behave like SQL lpad().
    """
    if value is None:
        return None
    if len(value) >= length:
        return value[:length]
    if not pad:
        return value
    missing = length - len(value)
    return (pad * (missing // len(pad) + 1))[:missing] + value


def _part(parts: list[str], index: int) -> str | None:
    return parts[index] if index < len(parts) else None


def clean_invoice_date(invoice_date: Any) -> tuple[str | None, str | None, datetime | None]:
    """
    Split a raw invoice date into (date, time, timestamp).

    Missing parts give None. The timestamp is None whenever the cleaned date
    and time do not form a valid "YYYY-MM-DD HH:MM" value. Never raises.
    """
    if invoice_date is None:
        return None, None, None

    timestamp_parts = str(invoice_date).split(" ")
    date_parts = timestamp_parts[0].split("/")
    raw_time = _part(timestamp_parts, 1)

    year = spark_lpad(_part(date_parts, 2), 4, "20")
    month = spark_lpad(_part(date_parts, 0), 2, "0")
    day = spark_lpad(_part(date_parts, 1), 2, "0")
    clean_date = f"{year}-{month}-{day}" if None not in (year, month, day) else None
    clean_time = spark_lpad(raw_time, 5, "0")

    if clean_date is None or clean_time is None:
        return clean_date, clean_time, None

    try:
        parsed = datetime.strptime(f"{clean_date} {clean_time}", _DATETIME_FORMAT)
    except ValueError:
        parsed = None
    return clean_date, clean_time, parsed


def clean_invoice_dates(records: Iterable[Record]) -> list[Record]:
    """quality_retail transform: normalize dates and project to transaction fields."""
    output = []
    for record in records:
        clean_date, clean_time, parsed = clean_invoice_date(record.get("InvoiceDate"))
        values = {name: record.get(name) for name in TRANSACTION_FIELDS}
        values["InvoiceDate"] = clean_date
        values["InvoiceTime"] = clean_time
        values["InvoiceDatetime"] = parsed
        output.append(freeze_record(values))
    return output


def prepare_quarantine(records: Iterable[Record]) -> list[Record]:
    """
    quarantined_retail transform.

    Produces exactly the rows quality_retail evaluates, plus the raw invoice
    date, so the complement of the quality gate sees the same values as the
    gate itself.
    """
    records = list(records)
    output = []
    for record, cleaned in zip(records, clean_invoice_dates(records)):
        values = dict(cleaned)
        values[RAW_INVOICE_DATE_FIELD] = record.get("InvoiceDate")
        output.append(freeze_record(values))
    return output


def project_quarantine(records: Iterable[Record]) -> list[Record]:
    """Restore the raw columns of quarantined rows after evaluation."""
    output = []
    for record in records:
        values = {name: record.get(name) for name in SOURCE_FIELDS}
        values["InvoiceDate"] = record.get(RAW_INVOICE_DATE_FIELD)
        values["InvoiceDatetime"] = record.get("InvoiceDatetime")
        values[FAILED_CONSTRAINTS_FIELD] = list(record.get(FAILED_CONSTRAINTS_FIELD) or [])
        output.append(freeze_record(values))
    return output
