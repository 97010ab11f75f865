"""Tests for the channel connection key."""

import json
import re
import time

from channel.key_manager import DAY_MS, ConnectionKeyManager
from utils.secure_files import write_json_record


class TestConnectionKeyManager:
    def test_generates_64_hex_key(self, tmp_path):
        key_file = tmp_path / "ws-key.json"
        record = ConnectionKeyManager(key_file=str(key_file)).load_or_generate()

        assert re.fullmatch(r"[0-9a-f]{64}", record.key)
        stored = json.loads(key_file.read_text())
        assert stored == {"key": record.key, "createdAt": record.created_at, "version": "1.0"}

    def test_reuses_valid_key(self, tmp_path):
        key_file = str(tmp_path / "ws-key.json")
        first = ConnectionKeyManager(key_file=key_file).load_or_generate()
        second = ConnectionKeyManager(key_file=key_file).load_or_generate()
        assert first.key == second.key

    def test_expired_key_is_rotated_and_observers_notified(self, tmp_path):
        key_file = tmp_path / "ws-key.json"
        old_created = int(time.time() * 1000) - 31 * DAY_MS
        write_json_record(key_file, {"key": "a" * 64, "createdAt": old_created, "version": "1.0"})

        manager = ConnectionKeyManager(key_file=str(key_file), max_age_days=30)
        rotated = []
        manager.on_key_rotated(rotated.append)
        record = manager.load_or_generate()

        assert record.key != "a" * 64
        assert rotated == [record]

    def test_regenerate_invalidates_previous_key(self, tmp_path):
        manager = ConnectionKeyManager(key_file=str(tmp_path / "ws-key.json"))
        old_key = manager.current().key
        rotated = []
        manager.on_key_rotated(rotated.append)

        new_record = manager.regenerate()
        assert not manager.validate(old_key)
        assert manager.validate(new_record.key)
        assert len(rotated) == 1

    def test_validate_rejects_missing_and_wrong_keys(self, tmp_path):
        manager = ConnectionKeyManager(key_file=str(tmp_path / "ws-key.json"))
        key = manager.current().key
        assert manager.validate(key)
        assert not manager.validate(None)
        assert not manager.validate("")
        assert not manager.validate(key[:-1])
        assert not manager.validate(key.upper())

    def test_connection_url(self, tmp_path):
        manager = ConnectionKeyManager(key_file=str(tmp_path / "ws-key.json"))
        key = manager.current().key
        assert manager.connection_url(port=9000, host="127.0.0.1") == f"ws://127.0.0.1:9000?key={key}"

    def test_info_reports_expiry(self, tmp_path):
        manager = ConnectionKeyManager(key_file=str(tmp_path / "ws-key.json"), max_age_days=30)
        info = manager.info()
        assert info["expires_at"] - info["created_at"] == 30 * DAY_MS
