"""Tests for the configuration helpers."""

from dataclasses import dataclass

import pytest

from pyeqsys.config import (
    dataclass_from_dict,
    expect_map,
    expect_sequence,
    get_if_present,
    get_required,
    load_yaml,
    single_key,
)
from pyeqsys.errors import ConfigurationError


@dataclass
class _Settings:
    name: str
    tolerance: float = 1e-6


class TestDataclassFromDict:
    def test_defaults(self):
        s = dataclass_from_dict(_Settings, {"name": "a"})
        assert s.name == "a"
        assert s.tolerance == 1e-6

    def test_comment_keys_ignored(self):
        s = dataclass_from_dict(_Settings, {"name": "a", "_note": "free text"})
        assert s.name == "a"

    def test_unknown_key(self):
        with pytest.raises(ConfigurationError, match="Unknown keys"):
            dataclass_from_dict(_Settings, {"name": "a", "tol": 1.0})

    def test_missing_key(self):
        with pytest.raises(ConfigurationError, match="Missing keys"):
            dataclass_from_dict(_Settings, {})


class TestTreeAccess:
    def test_get_required(self):
        assert get_required({"n": "3"}, "n", int) == 3
        with pytest.raises(ConfigurationError, match="Missing required key"):
            get_required({}, "n")

    def test_get_required_bad_type(self):
        with pytest.raises(ConfigurationError, match="cannot be read as int"):
            get_required({"n": "three"}, "n", int)

    def test_bool_needs_a_boolean(self):
        assert get_required({"flag": False}, "flag", bool) is False
        for value in ("false", 0, 1):
            with pytest.raises(ConfigurationError, match="cannot be read as bool"):
                get_required({"flag": value}, "flag", bool)

    def test_int_rejects_fractions(self):
        assert get_required({"n": 4.0}, "n", int) == 4
        with pytest.raises(ConfigurationError, match="cannot be read as int"):
            get_required({"n": 2.7}, "n", int)
        with pytest.raises(ConfigurationError, match="cannot be read as int"):
            get_required({"n": True}, "n", int)

    def test_get_if_present(self):
        assert get_if_present({}, "x", 2.0) == 2.0
        assert get_if_present(None, "x", 2.0) == 2.0
        assert get_if_present({"x": 1}, "x", 2.0, float) == 1.0

    def test_expect_map(self):
        assert expect_map({"a": {"b": 1}}, "a") == {"b": 1}
        assert expect_map({"a": None}, "a") == {}
        assert expect_map({}, "a", optional=True) is None
        with pytest.raises(ConfigurationError, match="to be a map"):
            expect_map({"a": [1]}, "a")

    def test_expect_sequence(self):
        assert expect_sequence({"a": (1, 2)}, "a") == [1, 2]
        with pytest.raises(ConfigurationError, match="Missing required sequence"):
            expect_sequence({}, "a")

    def test_single_key(self):
        assert single_key({"HeatConduction": None}, "systems") == ("HeatConduction", {})
        with pytest.raises(ConfigurationError, match="single-key map"):
            single_key({"a": 1, "b": 2}, "systems")


class TestLoadYaml:
    def test_load(self, tmp_path):
        path = tmp_path / "case.yaml"
        path.write_text("realm:\n  name: fluid\n")
        assert load_yaml(path) == {"realm": {"name": "fluid"}}

    def test_top_level_must_be_map(self, tmp_path):
        path = tmp_path / "case.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigurationError, match="must be a mapping"):
            load_yaml(path)
