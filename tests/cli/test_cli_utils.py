"""
Tests for CLI utilities.
"""

from __future__ import annotations

import pytest
import typer

from fanmap.cli.utils import load_target, parse_exports, parse_value, read_items

from tests._support import tasks


class TestLoadTarget:
    def test_colon_form(self):
        assert load_target("tests._support.tasks:square") is tasks.square

    def test_dotted_form(self):
        assert load_target("tests._support.tasks.square") is tasks.square

    def test_missing_module(self):
        with pytest.raises(typer.BadParameter):
            load_target("no_such_module_here:fn")

    def test_missing_attribute(self):
        with pytest.raises(typer.BadParameter):
            load_target("tests._support.tasks:missing")

    def test_not_callable(self):
        with pytest.raises(typer.BadParameter):
            load_target("tests._support.tasks:SEEN")

    def test_no_separator(self):
        with pytest.raises(typer.BadParameter):
            load_target("square")


class TestParseValue:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("3", 3), ("2.5", 2.5), ('"x"', "x"), ("[1, 2]", [1, 2]), ("null", None), ("plain", "plain")],
    )
    def test_json_or_string(self, raw, expected):
        assert parse_value(raw) == expected


class TestParseExports:
    def test_pairs(self):
        assert parse_exports(["FACTOR=3", 'NAMES=["a"]', "LABEL=north"]) == {
            "FACTOR": 3,
            "NAMES": ["a"],
            "LABEL": "north",
        }

    def test_missing_equals(self):
        with pytest.raises(typer.BadParameter):
            parse_exports(["FACTOR"])


class TestReadItems:
    def test_arguments_only(self):
        assert read_items(["1", "a"], None) == [1, "a"]

    def test_arguments_then_file(self, tmp_path):
        path = tmp_path / "items.json"
        path.write_text("[3, 4]", encoding="utf-8")
        assert read_items(["1"], path) == [1, 3, 4]

    def test_json_lines(self, tmp_path):
        path = tmp_path / "items.jsonl"
        path.write_text('{"a": 1}\n2\n', encoding="utf-8")
        assert read_items([], path) == [{"a": 1}, 2]
