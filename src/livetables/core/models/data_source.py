"""
DataSource model describing where the ingestion connector reads raw files.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field


class DataSource(BaseModel):
    """
    An origin of raw retail files.

    Attributes:
        source_id: Identifier for the source (used in logs and metrics)
        location: Directory the connector scans for new files
        file_format: "csv" or "json" (JSON lines)
        schema_ddl: Declared field list, e.g. "InvoiceNo STRING, Quantity FLOAT"
        read_options: Format options such as header and delimiter
    """

    source_id: str = Field(..., min_length=1, max_length=255)
    location: str = Field(..., min_length=1)
    file_format: Literal["csv", "json"] = "csv"
    schema_ddl: str = Field(..., min_length=1)
    read_options: dict[str, Any] = Field(default_factory=dict)

    class Config:
        json_schema_extra = {
            "example": {
                "source_id": "online_retail",
                "location": "/data/online_retail/data-001/",
                "file_format": "csv",
                "schema_ddl": "InvoiceNo STRING, Quantity FLOAT, Country STRING",
                "read_options": {"header": True},
            }
        }
