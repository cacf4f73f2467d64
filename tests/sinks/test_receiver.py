import pytest
from fastapi.testclient import TestClient

from api_switchboard.sinks.receiver import TIMESTAMP_COLUMN, Workbook, create_receiver_app


@pytest.fixture
def workbook() -> Workbook:
    return Workbook()


@pytest.fixture
def client(workbook) -> TestClient:
    return TestClient(create_receiver_app(workbook))


class TestAppend:
    """Test suite for append payloads."""

    def test_rows_appended_with_timestamp(self, workbook):
        response = workbook.receive({"sheetName": "Orders", "data": [{"id": 1, "total": 9.5}]})

        sheet = workbook.get("Orders")
        assert response == {"success": True, "result": "Written 1 rows with 2 columns"}
        assert sheet.headers == [TIMESTAMP_COLUMN, "id", "total"]
        assert sheet.rows[0]["total"] == 9.5

    def test_headers_grow_with_new_fields(self, workbook):
        workbook.receive({"sheetName": "S", "data": [{"id": 1}]})
        workbook.receive({"sheetName": "S", "data": [{"id": 2, "extra": "x"}]})

        assert workbook.get("S").headers == [TIMESTAMP_COLUMN, "id", "extra"]

    def test_bare_payload_goes_to_default_sheet(self, workbook):
        response = workbook.receive({"id": 1, "tags": ["a"]})

        sheet = workbook.get("API_Data")
        assert response["result"] == "Written 1 row with 2 columns"
        assert sheet.rows[0]["tags"] == '["a"]'

    def test_empty_array(self, workbook):
        response = workbook.receive({"sheetName": "S", "data": []})

        assert response["result"] == "Empty array - nothing to write"


class TestMerge:
    """Test suite for merge payloads."""

    @pytest.fixture
    def seeded(self, workbook) -> Workbook:
        workbook.receive({"sheetName": "People", "data": [{"id": "a", "name": "A"},
                                                           {"id": "b", "name": "B"}]})
        return workbook

    def test_unknown_keys_are_not_appended(self, seeded):
        response = seeded.receive({
            "sheetName": "People",
            "mode": "merge",
            "keyColumn": "id",
            "data": [{"id": "a", "score": 3}, {"id": "c", "score": 5}]
        })

        sheet = seeded.get("People")
        assert response["success"]
        assert response["matched"] == 1
        assert response["notFound"] == 1
        assert response["newColumns"] == 1
        assert len(sheet.rows) == 2
        assert [row.get("score", "") for row in sheet.rows] == [3, ""]
        assert response["result"] == "Merged 1 rows, 1 IDs not found, 1 new columns added"

    def test_missing_key_column(self, seeded):
        response = seeded.receive({"sheetName": "People", "mode": "merge",
                                   "keyColumn": "email", "data": [{"email": "x"}]})

        assert not response["success"]
        assert response["error"].startswith("Key column 'email' not found")

    def test_missing_sheet(self, workbook):
        response = workbook.receive({"sheetName": "Nope", "mode": "merge",
                                     "keyColumn": "id", "data": [{"id": 1}]})

        assert response == {"success": False, "error": "Sheet 'Nope' not found for merge"}

    def test_numeric_keys_match_text_cells(self, seeded):
        seeded.receive({"sheetName": "Nums", "data": [{"id": 7}]})

        response = seeded.receive({"sheetName": "Nums", "mode": "merge", "keyColumn": "id",
                                   "data": [{"id": "7", "flag": True}]})

        assert response["matched"] == 1


class TestGetIds:
    """Test suite for paginated id reads."""

    def test_skips_blank_cells(self, workbook):
        workbook.receive({"sheetName": "S", "data": [{"id": "1"}, {"id": ""}, {"id": None},
                                                      {"id": "4"}]})

        response = workbook.get_ids("S", "id")

        assert response["ids"] == ["1", "4"]
        assert response["total"] == 4
        assert not response["hasMore"]

    def test_limit_is_clamped(self, workbook):
        workbook.receive({"sheetName": "S", "data": [{"id": i} for i in range(1200)]})

        response = workbook.get_ids("S", "id", limit=5000)

        assert response["returned"] == 1000
        assert response["hasMore"]
        assert response["nextStart"] == 1000

    def test_start_past_end(self, workbook):
        workbook.receive({"sheetName": "S", "data": [{"id": 1}]})

        response = workbook.get_ids("S", "id", start=10)

        assert response["ids"] == []
        assert not response["hasMore"]

    def test_unknown_column_lists_headers(self, workbook):
        workbook.receive({"sheetName": "S", "data": [{"id": 1}]})

        response = workbook.get_ids("S", "email")

        assert not response["success"]
        assert response["availableHeaders"] == [TIMESTAMP_COLUMN, "id"]


class TestReceiverApp:
    """Test suite for the receiver HTTP contract."""

    def test_post_and_get_ids(self, client):
        client.post("/", json={"sheetName": "S", "data": [{"id": "x1"}, {"id": "x2"}]})

        response = client.get("/", params={"action": "getIds", "sheet": "S", "column": "id",
                                           "start": 1, "limit": 10})

        assert response.status_code == 200
        assert response.json()["ids"] == ["x2"]
        assert response.json()["startIndex"] == 1

    def test_health(self, client):
        client.post("/", json={"sheetName": "API_Data", "data": [{"id": 1}]})

        body = client.get("/").json()

        assert body["status"] == "ok"
        assert body["rows"] == 2
        assert body["supportsMerge"]

    def test_invalid_json(self, client):
        response = client.post("/", content="not json",
                               headers={"Content-Type": "application/json"})

        assert response.json()["success"] is False
        assert response.json()["error"].startswith("Invalid JSON")
