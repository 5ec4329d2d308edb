"""
Pytest configuration and fixtures for DataAsk tests.

Every test that needs the API gets its own application built by
``create_app`` with data and upload directories under ``tmp_path``, so tests
never share import jobs, connections or uploaded files.
"""
import os
import zipfile

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook
from sqlalchemy import text

from dataask.core.config import Settings
from dataask.db.connections import ConnectionManager, create_sqlite_engine
from dataask.domain.imports.jobs import ImportProgressRegistry
from dataask.domain.uploads.scratch import ScratchFileStore
from dataask.main import create_app


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        data_dir=str(tmp_path / "data"),
        upload_scratch_dir=str(tmp_path / "uploads"),
        import_batch_size=50,
        log_level="WARNING",
    )


@pytest.fixture
def app(test_settings):
    application = create_app(test_settings)
    yield application
    application.state.connections.dispose_all()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def registry():
    return ImportProgressRegistry()


@pytest.fixture
def connections(tmp_path):
    manager = ConnectionManager(str(tmp_path / "data"))
    yield manager
    manager.dispose_all()


@pytest.fixture
def scratch(tmp_path):
    return ScratchFileStore(str(tmp_path / "uploads"), max_bytes=5 * 1024 * 1024)


@pytest.fixture
def write_csv(tmp_path):
    """Write CSV text to a file under tmp_path and return its path."""

    def _write(name: str, content: str) -> str:
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return str(path)

    return _write


@pytest.fixture
def write_xlsx(tmp_path):
    """Build a workbook from ``{sheet_name: rows}`` and return its path."""

    def _write(name: str, sheets: dict) -> str:
        workbook = Workbook()
        workbook.remove(workbook.active)
        for sheet_name, rows in sheets.items():
            worksheet = workbook.create_sheet(sheet_name)
            for row in rows:
                worksheet.append(row)
        path = tmp_path / name
        workbook.save(path)
        return str(path)

    return _write


@pytest.fixture
def write_corrupt_xlsx(write_xlsx, tmp_path):
    """Build a workbook, then cut the end off its first sheet's XML."""

    def _write(name: str, sheets: dict, cut_bytes: int = 40) -> str:
        valid = write_xlsx(f"valid_{name}", sheets)
        path = tmp_path / name
        with zipfile.ZipFile(valid) as source, zipfile.ZipFile(path, "w") as target:
            for item in source.infolist():
                data = source.read(item.filename)
                if item.filename == "xl/worksheets/sheet1.xml":
                    data = data[:-cut_bytes]
                target.writestr(item, data)
        return str(path)

    return _write


@pytest.fixture
def people_db(tmp_path):
    """A SQLite file with a small ``people`` table."""
    path = str(tmp_path / "people.sqlite")
    engine = create_sqlite_engine(path)
    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE people (id INTEGER PRIMARY KEY, name TEXT NOT NULL, score REAL)"
        ))
        conn.execute(text(
            "INSERT INTO people (id, name, score) VALUES "
            "(1, 'Alice', 10.5), (2, 'Bob', NULL), (3, 'Carol', 7.25)"
        ))
    engine.dispose()
    assert os.path.exists(path)
    return path
