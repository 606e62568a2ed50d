import io
import json

import pytest

from switchpool.server import SERVER_NAME, handle_request


def call(registry, commands, tool, **arguments):
    request = {"jsonrpc": "2.0", "id": 3, "method": "tools/call", "params": {"name": tool, "arguments": arguments}}
    response = handle_request(request, registry, commands)
    payload = json.loads(response["result"]["content"][0]["text"])
    return payload, response["result"].get("isError", False)


@pytest.fixture()
def opened(registry, commands):
    payload, _ = call(registry, commands, "session_create", hosts=["SW-01", "SW-02"], username="admin", password="secret")
    return [item["id"] for item in payload["sessions"]]


def test_initialize(registry, commands):
    response = handle_request({"jsonrpc": "2.0", "id": 1, "method": "initialize"}, registry, commands)
    assert response["id"] == 1
    assert response["result"]["serverInfo"]["name"] == SERVER_NAME


def test_initialized_notification_has_no_response(registry, commands):
    assert handle_request({"jsonrpc": "2.0", "method": "notifications/initialized"}, registry, commands) is None


def test_tools_list(registry, commands):
    response = handle_request({"jsonrpc": "2.0", "id": 2, "method": "tools/list"}, registry, commands)
    names = [tool["name"] for tool in response["result"]["tools"]]
    assert names == ["session_create", "session_list", "session_remove", "invoke"]
    assert response["id"] == 2


def test_unknown_tool_and_method(registry, commands):
    response = handle_request(
        {"jsonrpc": "2.0", "id": 4, "method": "tools/call", "params": {"name": "reboot", "arguments": {}}},
        registry, commands,
    )
    assert response["error"]["code"] == -32601
    response = handle_request({"jsonrpc": "2.0", "id": 5, "method": "resources/list"}, registry, commands)
    assert response["error"]["code"] == -32601


class TestSessionCreate:
    def test_all_created(self, registry, commands):
        payload, is_error = call(registry, commands, "session_create", hosts=["SW-01", "SW-02"], username="admin", password="x")
        assert not is_error
        assert payload["status"] == "completed"
        assert [item["host"] for item in payload["sessions"]] == ["SW-01", "SW-02"]
        assert payload["failures"] == {}

    def test_partial(self, registry, commands, transport):
        transport.unreachable = {"SW-02"}
        payload, is_error = call(registry, commands, "session_create", hosts=["SW-01", "SW-02"], username="admin", password="x")
        assert not is_error
        assert payload["status"] == "partial"
        assert payload["created"] == 1
        assert "SW-02" in payload["failures"]

    def test_none_created(self, registry, commands, transport):
        transport.unreachable = {"SW-01"}
        payload, is_error = call(registry, commands, "session_create", hosts="SW-01", username="admin", password="x")
        assert is_error
        assert payload["status"] == "failed"

    def test_hosts_required(self, registry, commands):
        payload, is_error = call(registry, commands, "session_create", username="admin")
        assert is_error
        assert payload["error"] == "hosts is required"


class TestInvoke:
    def test_by_ids(self, registry, commands, opened):
        payload, is_error = call(registry, commands, "invoke", command="show version", session_ids=opened, completion="delay", wait=0)
        assert not is_error
        assert payload["status"] == "completed"
        assert payload["completion"] == "delay"
        assert [item["session_id"] for item in payload["results"]] == opened
        assert payload["failed_ids"] == []

    def test_by_names_with_prompt(self, registry, commands, opened):
        payload, _ = call(registry, commands, "invoke", command="show version", names=["SW-02"], completion="prompt", timeout=2)
        assert payload["total"] == 1
        assert payload["results"][0]["host"] == "SW-02"
        assert payload["results"][0]["lines"][-1] == "SW-02#"

    def test_failed_ids(self, registry, commands, transport, opened):
        transport.channel_for("SW-02").close()
        payload, is_error = call(registry, commands, "invoke", command="show version", session_ids=opened, completion="delay", wait=0)
        assert not is_error
        assert payload["status"] == "partial"
        assert payload["failed_ids"] == [opened[1]]
        assert payload["results"][1]["error_kind"] == "transport"

    def test_unknown_ids_give_empty_result(self, registry, commands):
        payload, _ = call(registry, commands, "invoke", command="show version", session_ids=[77], completion="delay", wait=0)
        assert payload["results"] == []
        assert payload["total"] == 0

    def test_invalid_completion(self, registry, commands, opened):
        payload, is_error = call(registry, commands, "invoke", command="show version", session_ids=opened, completion="quiet")
        assert is_error
        assert "completion must be one of" in payload["error"]

    def test_selection_and_command_required(self, registry, commands):
        payload, is_error = call(registry, commands, "invoke", command="show version")
        assert is_error
        assert "session_ids or names" in payload["error"]
        payload, is_error = call(registry, commands, "invoke", command="  ", session_ids=[1])
        assert payload["error"] == "command is required"


class TestListAndRemove:
    def test_list_all(self, registry, commands, opened):
        payload, _ = call(registry, commands, "session_list")
        assert [row["id"] for row in payload["sessions"]] == opened

    def test_list_filtered(self, registry, commands, opened):
        payload, _ = call(registry, commands, "session_list", names=["SW-02"], exact_match=True)
        assert [row["host"] for row in payload["sessions"]] == ["SW-02"]
        assert payload["total"] == 1

    def test_remove(self, registry, commands, opened):
        payload, is_error = call(registry, commands, "session_remove", session_ids=[opened[0]])
        assert not is_error
        assert payload["removed"] == [opened[0]]
        listing, _ = call(registry, commands, "session_list")
        assert [row["id"] for row in listing["sessions"]] == [opened[1]]

    def test_remove_reports_close_errors(self, registry, commands, transport, opened):
        transport.close_failures = {"SW-01"}
        payload, _ = call(registry, commands, "session_remove", names=["SW-*"])
        assert payload["removed"] == opened
        assert list(payload["close_errors"]) == [str(opened[0])]
        assert len(registry) == 0

    def test_remove_requires_selection(self, registry, commands):
        payload, is_error = call(registry, commands, "session_remove")
        assert is_error


def test_serve_loop(registry, commands, monkeypatch):
    from switchpool import main

    out = io.StringIO()
    monkeypatch.setattr(main, "_stdout", out)
    lines = [
        json.dumps({"jsonrpc": "2.0", "id": 1, "method": "initialize"}),
        "",
        "{not json",
        json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"}),
        json.dumps({"jsonrpc": "2.0", "id": 2, "method": "tools/list"}),
    ]

    main.serve(lines, registry, commands)

    responses = [json.loads(line) for line in out.getvalue().splitlines()]
    assert [response["id"] for response in responses] == [1, 2]


def test_serve_reports_internal_errors(registry, commands, monkeypatch):
    from switchpool import main

    out = io.StringIO()
    monkeypatch.setattr(main, "_stdout", out)
    monkeypatch.setattr(main, "handle_request", lambda request, registry, commands: 1 / 0)

    main.serve([json.dumps({"jsonrpc": "2.0", "id": 9, "method": "tools/list"})], registry, commands)

    response = json.loads(out.getvalue())
    assert response["id"] == 9
    assert response["error"]["code"] == -32603


def test_null_wait_and_timeout_use_configured_values(registry, commands, opened, monkeypatch):
    from switchpool.config import config

    monkeypatch.setattr(config, "WAIT_DURATION", 0.0)
    monkeypatch.setattr(config, "PROMPT_TIMEOUT", 2.0)

    payload, is_error = call(registry, commands, "invoke", command="show version", session_ids=opened, completion="delay", wait=None)
    assert not is_error
    assert payload["wait"] == 0.0

    payload, is_error = call(registry, commands, "invoke", command="show version", session_ids=opened, completion="prompt", timeout=None)
    assert not is_error
    assert payload["timeout"] == 2.0
    assert payload["status"] == "completed"
