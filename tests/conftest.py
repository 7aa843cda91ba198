"""
Pytest configuration and fixtures for livetables tests

This module provides shared fixtures for unit, integration, and E2E tests.
"""
import os
from pathlib import Path

import pytest

from livetables.core.config import PipelineSettings

RETAIL_HEADER = "InvoiceNo,StockCode,Description,Quantity,InvoiceDate,UnitPrice,CustomerID,Country"


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't touch more than one component"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests running the assembled pipeline on local files"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that drive the CLI"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# CONFIGURATION FIXTURES
# =======================

@pytest.fixture(scope="session", autouse=True)
def test_env_vars():
    """
    Set test environment variables

    This fixture loads config/test.env and sets environment variables
    """
    from dotenv import load_dotenv

    env_path = os.path.join(
        os.path.dirname(os.path.dirname(__file__)),
        "config",
        "test.env"
    )

    if os.path.exists(env_path):
        load_dotenv(env_path, override=True)


# =======================
# FILE FIXTURES
# =======================

@pytest.fixture(scope="function")
def data_dir(tmp_path) -> Path:
    """Empty directory the connector reads raw files from"""
    directory = tmp_path / "data"
    directory.mkdir()
    return directory


@pytest.fixture(scope="function")
def storage_dir(tmp_path) -> Path:
    """Empty storage root for stage logs and tables"""
    directory = tmp_path / "storage"
    directory.mkdir()
    return directory


@pytest.fixture
def write_retail_csv(data_dir):
    """
    Write retail rows to a CSV file in data_dir

    Usage:
        write_retail_csv("part-000.csv", ["536365,85123A,HEART,6,12/1/10 8:26,2.55,17850,United Kingdom"])
    """

    def _write(file_name: str, rows: list[str], header: bool = True) -> Path:
        path = data_dir / file_name
        lines = ([RETAIL_HEADER] if header else []) + rows
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write


@pytest.fixture
def append_retail_csv(data_dir):
    """Append rows to an existing CSV file in data_dir"""

    def _append(file_name: str, rows: list[str]) -> Path:
        path = data_dir / file_name
        with open(path, "a", encoding="utf-8") as f:
            f.write("\n".join(rows) + "\n")
        return path

    return _append


@pytest.fixture
def retail_settings(data_dir, storage_dir) -> PipelineSettings:
    """Settings for a continuously triggered retail pipeline on temp directories"""
    return PipelineSettings(
        data_source_path=str(data_dir),
        storage_path=str(storage_dir),
        max_workers=2,
        log_format="text",
        log_level="WARNING",
    )
