from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests

from managed_index.api_client import ManifestClient, ManifestSummary, get_server_manifest
from managed_index.config import ManagedIndexingConfig
from managed_index.logger import ManifestUnavailableError

pytestmark = pytest.mark.unit


def _response(status=200, payload=None, text=""):
    resp = MagicMock()
    resp.status_code = status
    if payload is None:
        resp.json.side_effect = ValueError("no json")
    else:
        resp.json.return_value = payload
    resp.text = text
    return resp


def _client(response=None, error=None, token="secret"):
    session = MagicMock()
    if error is not None:
        session.get.side_effect = error
    else:
        session.get.return_value = response
    return ManifestClient("http://manifest.local/", token=token, session=session), session


def test_get_manifest_sends_branch_query_and_bearer_token():
    client, session = _client(_response(payload={"totalFiles": 4, "totalChunks": 12, "lastUpdated": 0}))

    manifest = client.get_manifest("org-1", "proj-9", "feature/x")

    assert manifest.total_files == 4
    assert manifest.total_chunks == 12
    assert manifest.last_updated == datetime(1970, 1, 1, tzinfo=timezone.utc)
    args, kwargs = session.get.call_args
    assert args[0] == "http://manifest.local/api/code-indexing/manifest"
    assert kwargs["params"] == {"organizationId": "org-1", "projectId": "proj-9", "gitBranch": "feature/x"}
    assert kwargs["headers"]["Authorization"] == "Bearer secret"
    assert kwargs["timeout"] is None


def test_no_auth_header_without_token():
    client, session = _client(_response(payload={"totalFiles": 0, "totalChunks": 0}), token="")
    client.get_manifest("o", "p", "main")
    assert "Authorization" not in session.get.call_args[1]["headers"]


def test_file_hashes_accept_list_or_mapping():
    as_list = ManifestSummary.from_payload({
        "totalFiles": 1,
        "totalChunks": 2,
        "lastUpdated": "2024-05-01T10:00:00Z",
        "files": [{"filePath": "src/a.py", "fileHash": "abc"}, {"filePath": "", "fileHash": "x"}],
    })
    as_map = ManifestSummary.from_payload({"totalFiles": 1, "totalChunks": 2, "files": {"src/a.py": "abc"}})

    assert as_list.files == {"src/a.py": "abc"}
    assert as_map.files == {"src/a.py": "abc"}
    assert as_list.last_updated == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "response",
    [
        _response(status=404, payload={"error": "not found"}),
        _response(status=500, payload={"error": "db down"}),
        _response(status=502, text="<html>bad gateway</html>"),
        _response(status=200),
        _response(status=200, payload={"totalFiles": 3}),
        _response(status=200, payload=["not", "an", "object"]),
    ],
)
def test_unusable_responses_raise_manifest_unavailable(response):
    client, _ = _client(response)
    with pytest.raises(ManifestUnavailableError):
        client.get_manifest("o", "p", "main")


@pytest.mark.parametrize(
    "error",
    [
        requests.exceptions.Timeout("slow"),
        requests.exceptions.ConnectionError("refused"),
        requests.exceptions.RequestException("weird"),
    ],
)
def test_transport_errors_raise_manifest_unavailable(error):
    client, _ = _client(error=error)
    with pytest.raises(ManifestUnavailableError):
        client.get_manifest("o", "p", "main")


def test_server_error_message_includes_detail():
    client, _ = _client(_response(status=500, payload={"message": "db down"}))
    with pytest.raises(ManifestUnavailableError, match="HTTP 500: db down"):
        client.get_manifest("o", "p", "main")


def test_default_session_mounts_retry_adapter():
    client = ManifestClient("http://x", max_retries=5)
    adapter = client.session.get_adapter("http://x/api")
    assert adapter.max_retries.total == 5
    assert 503 in adapter.max_retries.status_forcelist
    client.close()


def test_get_server_manifest_uses_config(monkeypatch, tmp_path):
    captured = {}

    def fake_get(self, organization_id, project_id, branch):
        captured["base_url"] = self.base_url
        captured["token"] = self.token
        captured["timeout"] = self.timeout
        return ManifestSummary(1, 1, datetime.now(timezone.utc))

    monkeypatch.setattr(ManifestClient, "get_manifest", fake_get)
    config = ManagedIndexingConfig(
        workspace_path=str(tmp_path), api_base_url="https://idx.example/", token="cfg", http_timeout=7.5
    )

    get_server_manifest("o", "p", "main", "override", config=config)

    assert captured == {"base_url": "https://idx.example", "token": "override", "timeout": 7.5}


def test_per_call_token_overrides_client_token():
    client, session = _client(_response(payload={"totalFiles": 0, "totalChunks": 0}), token="client-token")
    client.get_manifest("o", "p", "main", token="call-token")
    assert session.get.call_args[1]["headers"]["Authorization"] == "Bearer call-token"
