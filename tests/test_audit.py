from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import httpx

from maps_explorer.audit import JsonlAuditLogger
from tests.client_test_utils import RecordingTransport, build_test_client


def test_redact_replaces_secret_keys_at_any_depth(tmp_path: Path) -> None:
    audit = JsonlAuditLogger(str(tmp_path / "audit.jsonl"), enabled=False)
    event = {
        "event": "x",
        "auth": {"apiKey": "k", "clientId": "c"},
        "headers": [{"Authorization": "Bearer t"}, {"subscription-key": "k"}],
    }
    assert audit.redact(event) == {
        "event": "x",
        "auth": {"apiKey": "[redacted]", "clientId": "c"},
        "headers": [{"Authorization": "[redacted]"}, {"subscription-key": "[redacted]"}],
    }


def test_redact_keys_can_be_replaced(tmp_path: Path) -> None:
    audit = JsonlAuditLogger(
        str(tmp_path / "audit.jsonl"), enabled=False, redact_keys=["Client-Id"]
    )
    assert audit.redact({"client-id": "c", "token": "t", "pairs": ({"CLIENT-ID": "d"},)}) == {
        "client-id": "[redacted]",
        "token": "t",
        "pairs": [{"CLIENT-ID": "[redacted]"}],
    }


def test_disabled_logger_writes_nothing(tmp_path: Path) -> None:
    path = tmp_path / "audit.jsonl"
    audit = JsonlAuditLogger(str(path), enabled=False)
    audit.log({"event": "x"})
    audit.close()
    assert not path.exists()


def test_logger_appends_jsonl_records(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "audit.jsonl"
    audit = JsonlAuditLogger(str(path))
    audit.log({"event": "first", "token": "t"})
    audit.log({"event": "second"})
    audit.close()

    records = [json.loads(line) for line in path.read_text().splitlines()]
    assert [record["event"] for record in records] == ["first", "second"]
    assert records[0]["token"] == "[redacted]"
    assert all("ts" in record for record in records)


def test_events_after_close_are_ignored(tmp_path: Path) -> None:
    path = tmp_path / "audit.jsonl"
    audit = JsonlAuditLogger(str(path))
    audit.log({"event": "kept"})
    audit.close()
    audit.log({"event": "late"})
    audit.close()

    records = [json.loads(line) for line in path.read_text().splitlines()]
    assert [record["event"] for record in records] == ["kept"]
    assert audit.dropped_records == 0


def test_proxy_requests_are_audited_without_query(monkeypatch: Any, tmp_path: Path) -> None:
    path = tmp_path / "maps.jsonl"
    transport = RecordingTransport(lambda _request: httpx.Response(200, json={}))
    with build_test_client(
        monkeypatch,
        transport,
        AZURE_MAPS_KEY="k",
        AUDIT_LOG_ENABLED="true",
        AUDIT_LOG_PATH=str(path),
    ) as client:
        client.post(
            "/api/maps",
            json={"path": "search/address/json", "params": {"query": "home address"}},
        )
        client.post("/api/maps", json={"path": "../x"})

    records = [json.loads(line) for line in path.read_text().splitlines()]
    assert [record["status"] for record in records] == [200, 400]
    assert records[0]["url"] == "https://atlas.microsoft.com/search/address/json"
    assert records[0]["auth"] == "key"
    assert records[1]["error_code"] == "invalid_path"
    assert "home" not in path.read_text()
