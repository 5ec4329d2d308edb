"""
End-to-end tests for the file upload and import endpoints.

``TestClient`` runs background tasks before returning the response, so an
import started by ``POST /api/files/import`` has finished by the time the
test polls its progress.
"""
import os

from fastapi.testclient import TestClient

from dataask.core.config import Settings
from dataask.main import create_app

PEOPLE_CSV = b"id,name,value\n1,Alice,10.5\n2,Bob,\n"


def _upload(client, content=PEOPLE_CSV, filename="people.csv", data=None):
    return client.post(
        "/api/files/upload",
        files={"file": (filename, content, "text/csv")},
        data=data or {},
    )


def _commit(client, preview, table_name, **extra):
    payload = {
        "filename": preview["filename"],
        "tableName": table_name,
        "columns": preview["columns"],
        "tempFilePath": preview["tempFilePath"],
    }
    payload.update(extra)
    return client.post("/api/files/import", json=payload)


def test_upload_returns_preview(client):
    response = _upload(client)

    assert response.status_code == 200
    preview = response.json()
    assert preview["filename"] == "people.csv"
    assert preview["rowCount"] == 2
    assert preview["headers"] == ["id", "name", "value"]
    assert [column["type"] for column in preview["columns"]] == ["INTEGER", "TEXT", "REAL"]
    assert preview["columns"][2]["missingCount"] == 1
    assert preview["columns"][1]["sampleValues"] == ["Alice", "Bob"]
    assert preview["sampleData"] == [["1", "Alice", "10.5"], ["2", "Bob", ""]]
    assert os.path.isfile(preview["tempFilePath"])


def test_upload_rejects_unsupported_extension(client):
    response = _upload(client, b"whatever", filename="notes.txt")

    assert response.status_code == 400
    assert response.json()["type"] == "validation_error"


def test_upload_rejects_empty_file(client):
    response = _upload(client, b"", filename="empty.csv")

    assert response.status_code == 400
    assert response.json()["type"] == "validation_error"


def test_upload_rejects_undecodable_file(client):
    response = _upload(client, b"id,name\n1,caf\xe9\n", filename="latin.csv")

    assert response.status_code == 400
    assert response.json()["type"] == "parse_error"


def test_upload_over_size_limit_is_rejected(tmp_path):
    config = Settings(
        data_dir=str(tmp_path / "data"),
        upload_scratch_dir=str(tmp_path / "uploads"),
        upload_max_file_size_mb=1,
    )
    client = TestClient(create_app(config))
    content = b"n\n" + b"1\n" * 600000

    response = _upload(client, content, filename="big.csv")

    assert response.status_code == 413
    assert os.listdir(tmp_path / "uploads") == []


def test_upload_spreadsheet_with_selected_sheet(client, write_xlsx):
    path = write_xlsx("book.xlsx", {"Summary": [["x"], [1]], "Orders": [["id", "total"], [1, 9.5], [2, 3]]})
    with open(path, "rb") as handle:
        content = handle.read()

    response = client.post(
        "/api/files/upload",
        files={"file": ("book.xlsx", content, "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")},
        data={"sheetName": "Orders"},
    )

    assert response.status_code == 200
    preview = response.json()
    assert preview["sheetName"] == "Orders"
    assert [column["type"] for column in preview["columns"]] == ["INTEGER", "REAL"]


def test_import_previous_upload_and_read_back(client):
    preview = _upload(client).json()

    response = _commit(client, preview, "people")

    assert response.status_code == 200
    started = response.json()
    assert started["rowCount"] == 2
    assert started["tableName"] == "people"
    assert {"connectionId", "importId"} <= set(started)

    progress = client.get(f"/api/files/import-progress/{started['importId']}").json()
    assert progress["status"] == "completed"
    assert progress["progress"] == 100
    assert progress["rowsProcessed"] == progress["totalRows"] == 2
    assert progress["summary"]["rowsInserted"] == 2

    rows = client.post("/api/db/table-preview", json={
        "connectionId": started["connectionId"], "tableName": "people",
    }).json()["rows"]
    assert rows == [
        {"id": 1, "name": "Alice", "value": 10.5},
        {"id": 2, "name": "Bob", "value": None},
    ]
    assert not os.path.exists(preview["tempFilePath"])


def test_import_honours_overridden_column_types(client):
    preview = _upload(client).json()
    columns = preview["columns"]
    columns[2] = {**columns[2], "type": "TEXT"}
    preview["columns"] = columns

    started = _commit(client, preview, "people_text").json()

    rows = client.post("/api/db/table-preview", json={
        "connectionId": started["connectionId"], "tableName": "people_text",
    }).json()["rows"]
    assert rows[0]["value"] == "10.5"


def test_one_shot_multipart_import(client):
    response = client.post(
        "/api/files/import",
        files={"file": ("people.csv", PEOPLE_CSV, "text/csv")},
        data={"tableName": "my people!"},
    )

    assert response.status_code == 200
    started = response.json()
    assert started["tableName"] == "my_people_"
    assert started["rowCount"] == 2
    job = client.get(f"/api/files/import-progress/{started['importId']}").json()
    assert job["status"] == "completed"


def test_one_shot_import_requires_table_name(client, app):
    response = client.post(
        "/api/files/import",
        files={"file": ("people.csv", PEOPLE_CSV, "text/csv")},
        data={"tableName": "  "},
    )

    assert response.status_code == 400
    assert response.json()["type"] == "validation_error"
    assert len(app.state.progress_registry) == 0


def test_import_into_existing_table_conflicts(client, app):
    first = _commit(client, _upload(client).json(), "people").json()
    second_preview = _upload(client).json()

    response = _commit(client, second_preview, "people", connectionId=first["connectionId"])

    assert response.status_code == 409
    assert response.json()["type"] == "conflict"
    assert len(app.state.progress_registry) == 1
    metadata = client.post("/api/db/table-metadata", json={
        "connectionId": first["connectionId"], "tableName": "people",
    }).json()
    assert metadata["row_count"] == 2
    assert os.path.isfile(second_preview["tempFilePath"])


def test_append_mode_into_existing_table(client):
    first = _commit(client, _upload(client).json(), "people").json()

    response = _commit(
        client, _upload(client).json(), "people", connectionId=first["connectionId"], mode="append",
    )

    assert response.status_code == 200
    metadata = client.post("/api/db/table-metadata", json={
        "connectionId": first["connectionId"], "tableName": "people",
    }).json()
    assert metadata["row_count"] == 4


def test_import_with_unknown_upload_is_not_found(client, test_settings):
    preview = _upload(client).json()
    os.remove(preview["tempFilePath"])

    response = _commit(client, preview, "people")

    assert response.status_code == 404
    assert response.json()["type"] == "not_found"


def test_import_rejects_paths_outside_the_upload_directory(client, write_csv):
    preview = _upload(client).json()
    preview["tempFilePath"] = write_csv("elsewhere.csv", "id\n1\n")

    response = _commit(client, preview, "people")

    assert response.status_code == 400


def test_import_with_missing_table_name_is_rejected(client):
    preview = _upload(client).json()

    response = _commit(client, preview, "")

    assert response.status_code == 400
    assert response.json()["type"] == "validation_error"


def test_import_with_mismatched_columns_is_rejected(client):
    preview = _upload(client).json()
    preview["columns"] = preview["columns"][:2]

    response = _commit(client, preview, "people")

    assert response.status_code == 400
    assert "columns" in response.json()["error"]


def test_progress_for_unknown_import_is_404(client):
    response = client.get("/api/files/import-progress/does-not-exist")

    assert response.status_code == 404
    assert response.json() == {"error": "Import 'does-not-exist' not found", "type": "not_found"}


def test_cancel_after_completion_reports_terminal_status(client):
    started = _commit(client, _upload(client).json(), "people").json()

    response = client.post(f"/api/files/import/{started['importId']}/cancel")

    assert response.status_code == 200
    assert response.json() == {"importId": started["importId"], "cancelRequested": False, "status": "completed"}


def test_cancel_unknown_import_is_404(client):
    assert client.post("/api/files/import/nope/cancel").status_code == 404


def test_discard_upload(client):
    preview = _upload(client).json()

    response = client.delete("/api/files/uploads", params={"tempFilePath": preview["tempFilePath"]})

    assert response.status_code == 200
    assert response.json()["deleted"] is True
    assert not os.path.exists(preview["tempFilePath"])

    again = client.delete("/api/files/uploads", params={"tempFilePath": preview["tempFilePath"]})
    assert again.json()["deleted"] is False


def test_root_and_health(client):
    assert client.get("/").json()["message"] == "DataAsk API"
    assert client.get("/health").json()["status"] == "healthy"


def test_upload_of_truncated_workbook_is_a_parse_error(client, test_settings, write_corrupt_xlsx):
    rows = [["id", "total"]] + [[index, index * 1.5] for index in range(30)]
    path = write_corrupt_xlsx("broken.xlsx", {"Orders": rows})
    with open(path, "rb") as handle:
        content = handle.read()

    response = client.post(
        "/api/files/upload",
        files={"file": ("broken.xlsx", content, "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")},
    )

    assert response.status_code == 400
    assert response.json()["type"] == "parse_error"
    assert os.listdir(test_settings.upload_scratch_dir) == []
