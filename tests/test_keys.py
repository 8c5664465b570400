"""Tests for API key rotation."""

import json
from pathlib import Path

import pytest

from forge_cli.errors import ApiError, ErrorCode
from forge_cli.llm.keys import KeyRotationManager, mask_key


class TestMaskKey:
    def test_long_key_keeps_last_four(self):
        assert mask_key("AIzaSyExample1234") == "********1234"

    def test_short_key_is_fully_masked(self):
        assert mask_key("abc") == "***"


class TestRotation:
    """Tests for round-robin rotation."""

    def test_starts_at_first_key(self):
        keys = KeyRotationManager(["a", "b", "c"])
        assert keys.current_index == 0
        assert keys.current_key == "a"

    def test_rotates_round_robin(self):
        keys = KeyRotationManager(["a", "b", "c"])
        seen = []
        for _ in range(4):
            assert keys.rotate() is True
            seen.append(keys.current_key)
        assert seen == ["b", "c", "a", "b"]

    def test_single_key_is_a_no_op(self):
        keys = KeyRotationManager(["only"])
        assert keys.rotate() is False
        assert keys.current_key == "only"

    def test_no_keys(self):
        keys = KeyRotationManager([])
        assert keys.rotate() is False
        with pytest.raises(ApiError) as exc_info:
            _ = keys.current_key
        assert exc_info.value.error_code == ErrorCode.NO_API_KEYS

    def test_stats(self):
        stats = KeyRotationManager(["a", "b"]).stats()
        assert stats["total_keys"] == 2
        assert stats["current_index"] == 0


class TestPersistence:
    """Tests for persisting the current index across runs."""

    def test_index_is_persisted_and_restored(self, tmp_path: Path):
        state = tmp_path / "state" / "key_state.json"
        keys = KeyRotationManager(["a", "b", "c"], state_file=state)
        keys.rotate()

        assert json.loads(state.read_text())["current_index"] == 1
        assert KeyRotationManager(["a", "b", "c"], state_file=state).current_key == "b"

    def test_out_of_range_index_resets(self, tmp_path: Path):
        state = tmp_path / "key_state.json"
        state.write_text(json.dumps({"current_index": 5}))
        assert KeyRotationManager(["a", "b"], state_file=state).current_index == 0

    def test_corrupt_state_resets(self, tmp_path: Path):
        state = tmp_path / "key_state.json"
        state.write_text("{not json")
        assert KeyRotationManager(["a", "b"], state_file=state).current_index == 0

    def test_single_key_does_not_write_state(self, tmp_path: Path):
        state = tmp_path / "key_state.json"
        KeyRotationManager(["only"], state_file=state).rotate()
        assert not state.exists()
