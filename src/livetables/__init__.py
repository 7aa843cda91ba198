"""
livetables: declarative incremental ETL pipelines for retail transactions.
"""

__version__ = "0.1.0"
