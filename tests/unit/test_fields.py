"""Tests for typed config field accessors."""

import pytest

from core.config.fields import get_bool, get_float, get_int, get_mapping, get_str, require_str
from core.secrets.exceptions import SecretConfigError


class TestFields:
    """Tests for field helpers."""

    def test_require_str_missing(self):
        """Should name the field and carry the suggestion."""
        with pytest.raises(SecretConfigError) as exc_info:
            require_str({}, "project_id", "Set 'project_id'")

        assert exc_info.value.field == "project_id"
        assert "Try: Set 'project_id'" in str(exc_info.value)

    def test_require_str_wrong_type(self):
        with pytest.raises(SecretConfigError):
            require_str({"project_id": 5}, "project_id")

    def test_get_str_default(self):
        assert get_str({"a": ""}, "a", "fallback") == "fallback"

    @pytest.mark.parametrize("raw,expected", [(True, True), ("yes", True), ("0", False), (None, False)])
    def test_get_bool(self, raw, expected):
        assert get_bool({"flag": raw}, "flag") is expected

    def test_get_bool_invalid(self):
        with pytest.raises(SecretConfigError):
            get_bool({"flag": "maybe"}, "flag")

    def test_get_int(self):
        assert get_int({"n": "42"}, "n") == 42
        assert get_int({}, "n", 7) == 7

    def test_get_int_rejects_bool(self):
        with pytest.raises(SecretConfigError):
            get_int({"n": True}, "n")

    def test_get_float(self):
        assert get_float({"t": 2}, "t") == 2.0

    def test_get_mapping(self):
        assert get_mapping({}, "auth") == {}
        assert get_mapping({"auth": {"a": 1}}, "auth") == {"a": 1}

    def test_get_mapping_wrong_type(self):
        with pytest.raises(SecretConfigError):
            get_mapping({"auth": "token"}, "auth")
