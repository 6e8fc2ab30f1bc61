import json
import os

import pytest

from idevkit.debugproxy import (
    BINARY_DECODER,
    DTX_DECODER,
    DumpDirectory,
    PhoneServiceInformation,
    ServiceRegistry,
    service_config_for_name,
    write_json_line,
)


def test_dtx_service_config():
    config = service_config_for_name("com.apple.instruments.remoteserver")
    assert config.decoder == DTX_DECODER
    assert config.handshake_only_ssl is True


def test_secure_proxy_uses_full_ssl():
    config = service_config_for_name("com.apple.testmanagerd.lockdown.secure")
    assert config.decoder == DTX_DECODER
    assert config.handshake_only_ssl is False


def test_debugserver_dumps_binary_with_handshake_only():
    config = service_config_for_name("com.apple.debugserver")
    assert config.decoder == BINARY_DECODER
    assert config.handshake_only_ssl is True


def test_unknown_service_falls_back_to_bindumper():
    assert service_config_for_name("com.example.unknown") == service_config_for_name("bindumper")
    assert service_config_for_name("com.example.unknown").decoder == BINARY_DECODER


def test_registry_finds_service_by_port():
    registry = ServiceRegistry()
    first = PhoneServiceInformation(1234, "com.apple.afc", False)
    second = PhoneServiceInformation(5678, "com.apple.debugserver", True)
    registry.store(first)
    registry.store(second)
    assert registry.by_port(5678) == second
    assert registry.by_port(1234) == first


def test_registry_returns_first_match():
    registry = ServiceRegistry()
    first = PhoneServiceInformation(1, "one", False)
    registry.store(first)
    registry.store(PhoneServiceInformation(1, "two", True))
    assert registry.by_port(1) == first


def test_registry_missing_port():
    with pytest.raises(LookupError):
        ServiceRegistry().by_port(99)


def test_write_json_line_round_trip(tmp_path):
    target = tmp_path / "out.json"
    write_json_line(str(target), {"a": 1, "b": "x"})
    write_json_line(str(target), [True, None])
    lines = target.read_text().splitlines()
    assert [json.loads(line) for line in lines] == [{"a": 1, "b": "x"}, [True, None]]


def test_write_json_line_encodes_bytes_as_base64(tmp_path):
    target = tmp_path / "out.json"
    write_json_line(str(target), {"data": b"hi"})
    assert json.loads(target.read_text()) == {"data": "aGk="}


def test_dump_directory_creates_working_dir(tmp_path):
    dumps = DumpDirectory(str(tmp_path))
    assert os.path.isdir(dumps.working_dir)
    assert os.path.basename(dumps.working_dir).startswith("dump-")


def test_new_connection_numbers_and_records(tmp_path):
    dumps = DumpDirectory(str(tmp_path))
    first = dumps.new_connection()
    second = dumps.new_connection()
    assert (first.id, second.id) == ("#1", "#2")
    assert os.path.isdir(first.connection_path)
    assert os.path.basename(second.connection_path).startswith("connection-#2-")
    with open(os.path.join(dumps.working_dir, "connections.json"), encoding="utf-8") as handle:
        records = [json.loads(line) for line in handle]
    assert [record["ID"] for record in records] == ["#1", "#2"]
    assert records[0]["ConnectionPath"] == first.connection_path


def test_log_message_tags_direction(tmp_path):
    dumps = DumpDirectory(str(tmp_path))
    info = dumps.new_connection()
    message = {"type": "LOCKDOWN", "payload": {"Request": "GetValue"}}
    dumps.log_message(info, message, to_device=True)
    dumps.log_message(info, message, to_device=False)
    with open(os.path.join(info.connection_path, "jsondump.json"), encoding="utf-8") as handle:
        records = [json.loads(line) for line in handle]
    assert [record["direction"] for record in records] == ["host->device", "device->host"]
    assert records[0]["payload"] == {"Request": "GetValue"}
    assert "direction" not in message