import sqlite3
from contextlib import closing
from datetime import date

import pytest
from fastapi.testclient import TestClient

from ccusage_tracker import collector_server
from ccusage_tracker.delivery import build_payload
from ccusage_tracker.usage_parser import parse_usage
from tests.sample_tables import MULTI_MODEL_TABLE, table_for


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(collector_server, "DB_PATH", tmp_path / "data" / "usage.db")
    monkeypatch.setattr(collector_server, "LOG_PATH", tmp_path / "logs" / "collector.log")
    with TestClient(collector_server.app) as test_client:
        yield test_client


def payload_for(user="alice", day=None, table=MULTI_MODEL_TABLE, note=""):
    record = parse_usage(table, day or date(2025, 8, 29))
    return build_payload(record, user, note, raw_output=table)


def test_health_on_empty_database(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "rows_recorded": 0}


def test_record_usage(client):
    response = client.post("/usage", json=payload_for())
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["date"] == "2025-08-29"
    assert body["tokens_recorded"] == 1650
    assert body["models"] == ["model-a", "model-b"]

    summary = client.get("/usage/summary", params={"day": "2025-08-29"}).json()
    assert summary["total_tokens"] == 1650
    assert summary["users"][0]["user"] == "alice"
    assert summary["users"][0]["cache_creation_tokens"] == 100


def test_later_report_replaces_earlier(client):
    client.post("/usage", json=payload_for(note="morning"))
    client.post("/usage", json=payload_for(note="evening"))

    summary = client.get("/usage/summary", params={"day": "2025-08-29"}).json()
    assert len(summary["users"]) == 1
    assert summary["users"][0]["total_tokens"] == 1650
    assert summary["users"][0]["note"] == "evening"


def test_summary_orders_by_cost(client):
    today = date.today()
    client.post("/usage", json=payload_for("alice", today, table_for(today.isoformat())))
    client.post("/usage", json=payload_for("bob", today, table_for(today.isoformat()).replace("$2.50", "$9.00")))

    summary = client.get("/usage/summary").json()
    assert summary["date"] == today.isoformat()
    assert [u["user"] for u in summary["users"]] == ["bob", "alice"]
    assert summary["total_cost"] == 11.5


def test_today_for_user(client):
    today = date.today()
    client.post("/usage", json=payload_for("alice", today, table_for(today.isoformat())))

    body = client.get("/usage/today/alice").json()
    assert body["total_tokens"] == 1650
    assert body["models"] == {"model-a": 1650}

    empty = client.get("/usage/today/nobody").json()
    assert empty["total_tokens"] == 0
    assert empty["models"] == {}


def test_not_found_report_is_rejected(client):
    response = client.post("/usage", json=payload_for(day=date(2025, 9, 1)))
    assert response.status_code == 400
    assert "2025-09-01" in response.json()["detail"]
    assert client.get("/health").json()["rows_recorded"] == 0


def test_negative_tokens_are_invalid(client):
    payload = payload_for()
    payload["totalTokens"] = -5
    assert client.post("/usage", json=payload).status_code == 422


def test_requests_are_logged(client):
    client.post("/usage", json=payload_for())
    log_text = collector_server.LOG_PATH.read_text()
    assert "Recorded 1,650 tokens" in log_text
    assert "alice" in log_text


def test_failed_write_rolls_back_and_closes(client, monkeypatch):
    with closing(sqlite3.connect(collector_server.DB_PATH)) as conn:
        conn.execute("DROP TABLE daily_models")

    opened, closed = [], []

    class TrackingConnection(sqlite3.Connection):
        def close(self):
            closed.append(self)
            super().close()

    def tracking_db():
        conn = sqlite3.connect(collector_server.DB_PATH, factory=TrackingConnection)
        opened.append(conn)
        return conn

    monkeypatch.setattr(collector_server, "get_db", tracking_db)

    response = client.post("/usage", json=payload_for())
    assert response.status_code == 500
    assert "ERROR recording usage" in collector_server.LOG_PATH.read_text()

    # The daily_usage upsert ran before the failure and must not survive it
    assert client.get("/health").json()["rows_recorded"] == 0
    assert opened and opened == closed
