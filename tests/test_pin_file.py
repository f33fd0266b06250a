from __future__ import annotations

from pathlib import Path

import pytest

from pypin.core.errors import MalformedSpecifierError
from pypin.core.pin_file import (
    SOURCE_BUILTIN,
    SOURCE_CONFIG,
    SOURCE_ENV,
    SOURCE_PIN_FILE,
    default_specifier,
    find_pin_file,
    load_selected_specifier,
    parse_selection,
    read_pin_file,
    write_pin_file,
)
from pypin.core.resolver import resolve
from pypin.core.specifier import LatestSpecifier, PathSpecifier, parse_specifier
from pypin.core.toolchain import InstalledToolchain
from pypin.core.version_utils import Version
from pypin.utils.paths import PIN_FILE_NAME


def test_read_skips_comments_and_blank_lines(tmp_path: Path) -> None:
    pin = tmp_path / PIN_FILE_NAME
    pin.write_text("# project interpreter\n\n   \n~3.7\n3.6.8\n", encoding="utf-8")
    assert read_pin_file(pin) == parse_specifier("~3.7")


def test_read_empty_file_is_malformed(tmp_path: Path) -> None:
    pin = tmp_path / PIN_FILE_NAME
    pin.write_text("# nothing here\n", encoding="utf-8")
    with pytest.raises(MalformedSpecifierError):
        read_pin_file(pin)


def test_read_invalid_specifier(tmp_path: Path) -> None:
    pin = tmp_path / PIN_FILE_NAME
    pin.write_text("three point seven\n", encoding="utf-8")
    with pytest.raises(MalformedSpecifierError):
        read_pin_file(pin)


def test_read_ignores_byte_order_mark(tmp_path: Path) -> None:
    pin = tmp_path / PIN_FILE_NAME
    pin.write_bytes(b"\xef\xbb\xbf3.7.2\r\n")
    assert read_pin_file(pin) == parse_specifier("3.7.2")


def test_read_relative_path_is_anchored_at_pin_directory(tmp_path: Path) -> None:
    pin = tmp_path / "project" / PIN_FILE_NAME
    pin.parent.mkdir()
    pin.write_text("../envs/py39\n", encoding="utf-8")
    specifier = read_pin_file(pin)
    assert isinstance(specifier, PathSpecifier)
    assert specifier.path == tmp_path / "envs" / "py39"
    assert str(specifier) == str(tmp_path / "envs" / "py39")


def test_parse_selection_requires_existing_path(tmp_path: Path) -> None:
    with pytest.raises(MalformedSpecifierError):
        parse_selection("./missing", tmp_path, must_exist=True)
    (tmp_path / "present").mkdir()
    assert parse_selection("./present", tmp_path, must_exist=True) == PathSpecifier(tmp_path / "present", "./present")
    assert parse_selection("~3.7", tmp_path, must_exist=True) == parse_specifier("~3.7")


def test_find_walks_up_to_parent(tmp_path: Path) -> None:
    (tmp_path / PIN_FILE_NAME).write_text("3.6.8\n", encoding="utf-8")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    assert find_pin_file(nested) == tmp_path / PIN_FILE_NAME


def test_find_current_directory_wins(tmp_path: Path) -> None:
    (tmp_path / PIN_FILE_NAME).write_text("3.6.8\n", encoding="utf-8")
    nested = tmp_path / "a"
    nested.mkdir()
    (nested / PIN_FILE_NAME).write_text("3.7.2\n", encoding="utf-8")
    assert find_pin_file(nested) == nested / PIN_FILE_NAME
    assert load_selected_specifier(nested).specifier == parse_specifier("3.7.2")


@pytest.mark.parametrize("text", ["3.7.2", "= 3.6.9", "~3.7", ">=3.6, <3.8", "latest"])
def test_write_then_resolve_round_trip(tmp_path: Path, text: str) -> None:
    candidates = [InstalledToolchain(Version.parse(v), tmp_path / v) for v in ("3.6.8", "3.7.1", "3.7.2")]
    specifier = parse_specifier(text)
    write_pin_file(tmp_path, specifier)
    selected = load_selected_specifier(tmp_path)
    assert selected.source == SOURCE_PIN_FILE
    assert selected.path == tmp_path / PIN_FILE_NAME
    assert resolve(selected.specifier, candidates) == resolve(specifier, candidates)


def test_write_canonical_text(tmp_path: Path) -> None:
    path = write_pin_file(tmp_path, parse_specifier("  ~3.7  "))
    assert path.read_text(encoding="utf-8") == "~3.7\n"
    assert not path.with_name(path.name + ".tmp").exists()


def test_default_precedence(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PYPIN_DEFAULT_VERSION", raising=False)
    builtin = default_specifier()
    assert builtin.source == SOURCE_BUILTIN
    assert isinstance(builtin.specifier, LatestSpecifier)

    configured = default_specifier("3.6")
    assert configured.source == SOURCE_CONFIG
    assert configured.specifier == parse_specifier("3.6")

    monkeypatch.setenv("PYPIN_DEFAULT_VERSION", "3.7.2")
    from_env = default_specifier("3.6")
    assert from_env.source == SOURCE_ENV
    assert from_env.specifier == parse_specifier("3.7.2")
