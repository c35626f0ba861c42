from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from sqlgate.errors import IndexOutOfRangeError, PersistenceError, ValidationError
from sqlgate.registry import ServerProfile, ServerRegistry, ServerUpdate


def _profile(**overrides: object) -> ServerProfile:
    data: dict[str, object] = {"name": "main", "ip": "10.0.0.5", "port": 1433, "user": "sa", "password": "s3cret"}
    data.update(overrides)
    return ServerProfile.model_validate(data)


def test_save_then_list_has_created_at_and_no_updated_at(registry: ServerRegistry) -> None:
    registry.save(_profile())

    servers = registry.list()
    assert len(servers) == 1
    assert servers[0].ip == "10.0.0.5"
    assert servers[0].password == "s3cret"
    assert servers[0].created_at
    assert servers[0].updated_at is None

    raw = json.loads(registry.path.read_text(encoding="utf-8"))
    assert raw[0]["createdAt"] == servers[0].created_at
    assert "updatedAt" not in raw[0]


def test_save_creates_missing_directory(tmp_path: Path) -> None:
    registry = ServerRegistry(tmp_path / "nested" / "dir" / "servers.json")
    registry.save(_profile())
    assert registry.path.exists()


def test_save_appends_without_deduplicating_ip(registry: ServerRegistry) -> None:
    registry.save(_profile(name="a"))
    registry.save(_profile(name="b"))

    servers = registry.list()
    assert [server.name for server in servers] == ["a", "b"]
    assert registry.find_index_by_ip("10.0.0.5") == 0


def test_save_rejects_blank_ip(registry: ServerRegistry) -> None:
    with pytest.raises(ValidationError):
        registry.save(_profile(ip="   "))
    assert registry.list() == []


def test_update_preserves_unspecified_fields_and_sets_updated_at(registry: ServerRegistry) -> None:
    registry.save(_profile())
    created_at = registry.list()[0].created_at

    registry.update(0, ServerUpdate(name="renamed", port=1444))

    server = registry.list()[0]
    assert server.name == "renamed"
    assert server.port == 1444
    assert server.ip == "10.0.0.5"
    assert server.user == "sa"
    assert server.password == "s3cret"
    assert server.created_at == created_at
    assert server.updated_at is not None


@pytest.mark.parametrize("index", [-1, 1, 7])
def test_update_out_of_range_leaves_list_unchanged(registry: ServerRegistry, index: int) -> None:
    registry.save(_profile())
    before = registry.path.read_text(encoding="utf-8")

    with pytest.raises(IndexOutOfRangeError):
        registry.update(index, ServerUpdate(name="x"))

    assert registry.path.read_text(encoding="utf-8") == before


def test_delete_shrinks_and_reindexes(registry: ServerRegistry) -> None:
    for ip in ("10.0.0.1", "10.0.0.2", "10.0.0.3"):
        registry.save(_profile(ip=ip))

    registry.delete(0)

    servers = registry.list()
    assert [server.ip for server in servers] == ["10.0.0.2", "10.0.0.3"]
    assert registry.find_index_by_ip("10.0.0.3") == 1


def test_delete_out_of_range(registry: ServerRegistry) -> None:
    with pytest.raises(IndexOutOfRangeError):
        registry.delete(0)


def test_find_index_by_ip_trims_and_misses(registry: ServerRegistry) -> None:
    registry.save(_profile(ip="10.0.0.1"))
    assert registry.find_index_by_ip(" 10.0.0.1 ") == 0
    assert registry.find_index_by_ip("10.0.0.9") == -1
    assert registry.find_index_by_ip("") == -1
    assert registry.find_index_by_ip(None) == -1


def test_legacy_string_ports_are_coerced(registry: ServerRegistry) -> None:
    registry.path.parent.mkdir(parents=True, exist_ok=True)
    registry.path.write_text(
        json.dumps(
            [
                {"name": "old", "ip": "10.0.0.1", "port": "1500", "user": "sa", "password": "x"},
                {"name": "blank", "ip": "10.0.0.2", "port": "", "user": "sa", "password": "x"},
            ]
        ),
        encoding="utf-8",
    )

    servers = registry.list()
    assert [server.port for server in servers] == [1500, 1433]


def test_unreadable_registry_reads_as_empty(registry: ServerRegistry) -> None:
    registry.path.parent.mkdir(parents=True, exist_ok=True)
    registry.path.write_text("{not json", encoding="utf-8")
    assert registry.list() == []

    registry.path.write_text('{"ip": "10.0.0.1"}', encoding="utf-8")
    assert registry.list() == []


def test_write_failure_raises_persistence_error_and_keeps_file(
    registry: ServerRegistry,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    registry.save(_profile())
    before = registry.path.read_text(encoding="utf-8")

    def broken_replace(src: str, dst: object) -> None:
        raise PermissionError("read-only filesystem")

    monkeypatch.setattr("sqlgate.registry.os.replace", broken_replace)

    with pytest.raises(PersistenceError, match="read-only filesystem"):
        registry.save(_profile(ip="10.0.0.6"))

    assert registry.path.read_text(encoding="utf-8") == before
    assert [p.name for p in registry.path.parent.iterdir()] == ["servers.json"]


def test_invalid_entry_is_skipped_and_dropped_on_next_write(registry: ServerRegistry) -> None:
    registry.path.parent.mkdir(parents=True, exist_ok=True)
    registry.path.write_text(
        json.dumps(
            [
                {"name": {"x": 1}, "ip": "10.0.0.1"},
                {"name": "ok", "ip": "10.0.0.2", "port": 1433, "user": "sa", "password": "x"},
            ]
        ),
        encoding="utf-8",
    )

    assert [server.name for server in registry.list()] == ["ok"]

    registry.save(_profile(ip="10.0.0.3"))
    stored = json.loads(registry.path.read_text(encoding="utf-8"))
    assert [entry["ip"] for entry in stored] == ["10.0.0.2", "10.0.0.3"]


@pytest.mark.parametrize("port", ["abc", "-1", 0, 65536, True])
def test_update_rejects_invalid_explicit_port(port: object) -> None:
    with pytest.raises(PydanticValidationError, match="port must be an integer"):
        ServerUpdate.model_validate({"port": port})


def test_update_blank_port_resets_to_default(registry: ServerRegistry) -> None:
    registry.save(_profile(port=1500))

    registry.update(0, ServerUpdate.model_validate({"port": " "}))

    assert registry.get(0).port == 1433
