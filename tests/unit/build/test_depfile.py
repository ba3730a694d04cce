"""Unit tests for dependency records and the staleness rule."""

import json
import os
from pathlib import Path

import pytest

from treebuild.build.depfile import DependencyRecord, needs_rebuild, parse_make_depfile

CMD = ["cc", "-c", "a.c", "-o", "a.o"]

# ─── Helpers ──────────────────────────────────────────────────────────────────


def _set_mtime(path: Path, mtime_ns: int) -> None:
    os.utime(path, ns=(mtime_ns, mtime_ns))


@pytest.fixture
def unit(tmp_path):
    """A source, a header, an object and a record that is up to date."""
    source = tmp_path / "a.c"
    header = tmp_path / "a.h"
    obj = tmp_path / "a.o"
    record = tmp_path / ".a.o.cmd"
    source.write_text('#include "a.h"\n', encoding="utf-8")
    header.write_text("#define A 1\n", encoding="utf-8")
    obj.write_bytes(b"OBJ")
    DependencyRecord(source=str(source), command=tuple(CMD), dependencies=(str(header),)).save(record)

    base = 1_700_000_000_000_000_000
    _set_mtime(source, base)
    _set_mtime(header, base)
    _set_mtime(obj, base + 1_000_000_000)
    return source, header, obj, record


# ─── Tests ────────────────────────────────────────────────────────────────────


class TestDependencyRecord:
    """Record persistence."""

    def test_save_and_load(self, tmp_path):
        """A saved record loads back equal."""
        record = DependencyRecord(source="a.c", command=("cc", "-c", "a.c"), dependencies=("a.h", "b.h"))
        path = tmp_path / "sub" / ".a.o.cmd"
        record.save(path)
        assert DependencyRecord.load(path) == record
        assert not path.with_name(path.name + ".tmp").exists()

    def test_load_missing_returns_none(self, tmp_path):
        """A missing record is None."""
        assert DependencyRecord.load(tmp_path / ".x.o.cmd") is None

    def test_load_malformed_returns_none(self, tmp_path):
        """Garbage, wrong versions and wrong types are all treated as missing."""
        path = tmp_path / ".x.o.cmd"
        for content in ("not json", json.dumps({"version": 99, "source": "a", "command": [], "dependencies": []}), json.dumps({"version": 1, "source": "a", "command": "cc", "dependencies": []})):
            path.write_text(content, encoding="utf-8")
            assert DependencyRecord.load(path) is None


class TestParseMakeDepfile:
    """Parsing cc -MD output."""

    def test_simple_rule(self):
        """Prerequisites follow the target."""
        assert parse_make_depfile("a.o: a.c a.h\n") == ["a.c", "a.h"]

    def test_continuations_and_phony_rules(self):
        """Continuation lines join; -MP phony rules add nothing new."""
        text = "a.o: a.c \\\n  include/b.h \\\n  c.h\ninclude/b.h:\nc.h:\n"
        assert parse_make_depfile(text) == ["a.c", "include/b.h", "c.h"]

    def test_escaped_spaces(self):
        """Backslash-escaped spaces stay inside one path."""
        assert parse_make_depfile("a.o: my\\ dir/a.c\n") == ["my dir/a.c"]

    def test_separated_colon(self):
        """'target : deps' with a free-standing colon is understood."""
        assert parse_make_depfile("a.o : a.c\n") == ["a.c"]

    def test_empty(self):
        """An empty depfile has no prerequisites."""
        assert parse_make_depfile("") == []


class TestNeedsRebuild:
    """The make-style staleness rule."""

    def test_up_to_date(self, unit):
        """Nothing changed: reuse."""
        source, _, obj, record = unit
        assert needs_rebuild(source, obj, record, CMD) == (False, "up to date")

    def test_equal_mtime_is_up_to_date(self, unit):
        """A prerequisite with the same mtime as the object is not newer."""
        source, header, obj, record = unit
        _set_mtime(header, obj.stat().st_mtime_ns)
        assert needs_rebuild(source, obj, record, CMD)[0] is False

    def test_object_missing(self, unit):
        source, _, obj, record = unit
        obj.unlink()
        assert needs_rebuild(source, obj, record, CMD) == (True, "object missing")

    def test_record_missing(self, unit):
        source, _, obj, record = unit
        record.unlink()
        assert needs_rebuild(source, obj, record, CMD) == (True, "dependency record missing")

    def test_command_changed(self, unit):
        """A different command line forces a rebuild."""
        source, _, obj, record = unit
        assert needs_rebuild(source, obj, record, CMD + ["-DNEW"]) == (True, "command line changed")

    def test_newer_header(self, unit):
        """A header newer than the object forces a rebuild."""
        source, header, obj, record = unit
        _set_mtime(header, obj.stat().st_mtime_ns + 1_000_000_000)
        rebuild, reason = needs_rebuild(source, obj, record, CMD)
        assert rebuild
        assert reason == f"newer prerequisite: {header}"

    def test_newer_source(self, unit):
        source, _, obj, record = unit
        _set_mtime(source, obj.stat().st_mtime_ns + 1_000_000_000)
        assert needs_rebuild(source, obj, record, CMD)[0] is True

    def test_deleted_header(self, unit):
        """A recorded dependency that disappeared forces a rebuild."""
        source, header, obj, record = unit
        header.unlink()
        assert needs_rebuild(source, obj, record, CMD) == (True, f"dependency missing: {header}")
