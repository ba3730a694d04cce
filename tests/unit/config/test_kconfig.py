"""Unit tests for the .config parser and BuildConfig snapshot."""

from pathlib import Path

import pytest

from treebuild.config.kconfig import DISABLED, ENABLED, BuildConfig, load_config, parse_config
from treebuild.errors import ConfigurationError


class TestParseConfig:
    """Parsing .config text."""

    def test_bool_tristate_string_and_int_values(self):
        """Each value kind is kept as written, strings without quotes."""
        config = parse_config('CONFIG_NET=y\nCONFIG_USB=m\nCONFIG_HOST="build host"\nCONFIG_LEVEL=4\n')
        assert config.get("CONFIG_NET") == "y"
        assert config.get("CONFIG_USB") == "m"
        assert config.get("CONFIG_HOST") == "build host"
        assert config.get("CONFIG_LEVEL") == "4"

    def test_not_set_comment_means_disabled(self):
        """'# CONFIG_X is not set' records the flag as n."""
        config = parse_config("# CONFIG_USB is not set\n")
        assert config.get("CONFIG_USB") == DISABLED
        assert not config.is_enabled("CONFIG_USB")
        assert "CONFIG_USB" in config

    def test_comments_and_blank_lines_ignored(self):
        """Ordinary comments and blank lines contribute nothing."""
        config = parse_config("#\n# Automatically generated file\n\n   \nCONFIG_A=y\n")
        assert len(config) == 1

    def test_later_assignment_wins(self):
        """A flag assigned twice keeps the last value."""
        config = parse_config("CONFIG_A=y\nCONFIG_A=n\n")
        assert config.get("CONFIG_A") == "n"

    def test_malformed_line_raises(self):
        """A line that is neither comment nor CONFIG_ assignment is an error."""
        with pytest.raises(ConfigurationError, match="line 2"):
            parse_config("CONFIG_A=y\nNET=y\n", source=Path(".config"))

    def test_escaped_quotes_in_string(self):
        """Escaped quotes inside string values are unescaped."""
        config = parse_config('CONFIG_MSG="say \\"hi\\""\n')
        assert config.get("CONFIG_MSG") == 'say "hi"'


class TestBuildConfig:
    """Queries on the immutable snapshot."""

    def test_only_y_is_enabled(self):
        """m, n, strings and numbers are not 'enabled'."""
        config = BuildConfig.from_mapping({"CONFIG_A": "y", "CONFIG_B": "m", "CONFIG_C": "n", "CONFIG_D": "1"})
        assert config.enabled_flags() == frozenset({"CONFIG_A"})

    def test_unset_flag_expands_empty(self):
        """$(CONFIG_MISSING) expands to the empty string."""
        config = BuildConfig.from_mapping({})
        assert config.expand("CONFIG_MISSING") == ""
        assert not config.is_enabled("CONFIG_MISSING")

    def test_from_mapping_converts_bools(self):
        """True/False become y/n."""
        config = BuildConfig.from_mapping({"CONFIG_A": True, "CONFIG_B": False})
        assert config.get("CONFIG_A") == ENABLED
        assert config.get("CONFIG_B") == DISABLED

    def test_snapshot_is_isolated_from_source_mapping(self):
        """Mutating the input mapping after creation is not observed."""
        flags = {"CONFIG_A": "y"}
        config = BuildConfig.from_mapping(flags)
        flags["CONFIG_A"] = "n"
        assert config.is_enabled("CONFIG_A")

    def test_values_are_read_only(self):
        """The values mapping cannot be mutated."""
        config = BuildConfig.from_mapping({"CONFIG_A": "y"})
        with pytest.raises(TypeError):
            config.values["CONFIG_A"] = "n"  # type: ignore[index]


class TestLoadConfig:
    """Loading .config files from disk."""

    def test_load_file(self, tmp_path):
        """A valid file loads with its source path recorded."""
        path = tmp_path / ".config"
        path.write_text("CONFIG_NET=y\n", encoding="utf-8")
        config = load_config(path)
        assert config.is_enabled("CONFIG_NET")
        assert config.source == path

    def test_missing_file_raises(self, tmp_path):
        """A missing file is a ConfigurationError, not an OSError."""
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "missing.config")

    def test_directory_instead_of_file_raises(self, tmp_path):
        """A directory path is rejected like a missing file."""
        with pytest.raises(ConfigurationError):
            load_config(tmp_path)
