"""
Stage transforms.
"""

from .common import add_input_file_name
from .retail import (
    QUARANTINE_CANDIDATE_FIELDS,
    QUARANTINE_FIELDS,
    RAW_INVOICE_DATE_FIELD,
    SOURCE_FIELDS,
    TRANSACTION_FIELDS,
    clean_invoice_date,
    clean_invoice_dates,
    prepare_quarantine,
    project_quarantine,
    spark_lpad,
)

__all__ = [
    "add_input_file_name",
    "SOURCE_FIELDS",
    "TRANSACTION_FIELDS",
    "RAW_INVOICE_DATE_FIELD",
    "QUARANTINE_CANDIDATE_FIELDS",
    "QUARANTINE_FIELDS",
    "spark_lpad",
    "clean_invoice_date",
    "clean_invoice_dates",
    "prepare_quarantine",
    "project_quarantine",
]
