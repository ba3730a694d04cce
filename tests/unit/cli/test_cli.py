"""Tests for the treebuild command line."""

import logging
from unittest.mock import patch

import pytest

from treebuild import __version__
from treebuild.build.archive import read_thin_archive
from treebuild.cli import main


@pytest.fixture(autouse=True)
def reset_cli_state():
    """Drop handlers bound to captured streams once each test ends."""
    yield
    from treebuild import output

    output._output_stream = None
    output.set_output_file(None)
    output.set_verbose(True)
    logger = logging.getLogger("treebuild")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)


@pytest.fixture
def project(tmp_path, make_tree):
    """Source tree with an optional subdirectory and a matching .config."""
    make_tree(
        {
            "Kbuild": "obj-y += alpha.o\nobj-$(CONFIG_BETA) += beta/\n",
            "alpha.c": "int alpha;\n",
            "beta/Kbuild": "obj-y += b.o\nccflags-y += -DBETA\n",
            "beta/b.c": "int b;\n",
        }
    )
    config = tmp_path / ".config"
    config.write_text("CONFIG_BETA=y\n")
    return tmp_path


def _run(argv):
    with pytest.raises(SystemExit) as exc_info:
        main([str(arg) for arg in argv])
    return exc_info.value.code


class TestCLIBuild:
    """Tests for the 'treebuild build' command."""

    def test_build_success(self, project, fake_compiler, capsys):
        with patch("treebuild.cli.GccCompiler", return_value=fake_compiler) as mock_cc:
            code = _run(["build", project / "src", project / "out", "-c", project / ".config", "--no-tui", "-j", "2"])

        assert code == 0
        mock_cc.assert_called_once()
        members = [m.name for m in read_thin_archive(project / "out" / "built-in.a")]
        assert members == ["alpha.o", "beta/built-in.a"]
        assert "Build successful" in capsys.readouterr().out

    def test_build_passes_cc_and_flags(self, project, fake_compiler):
        with patch("treebuild.cli.GccCompiler", return_value=fake_compiler) as mock_cc:
            code = _run(["build", project / "src", project / "out", "-c", project / ".config", "--no-tui", "--cc", "clang", "--cflag=-O2", "--cflag=-g"])

        assert code == 0
        assert mock_cc.call_args.kwargs["cc"] == "clang"
        assert (project / "out" / "beta" / "b.o").read_text().startswith("OBJ -O2 -g -DBETA\n")

    def test_detached_cflag_is_usage_error(self, project, capsys):
        code = _run(["build", project / "src", project / "out", "-c", project / ".config", "--cflag", "-O2"])

        assert code == 2
        assert "--cflag" in capsys.readouterr().err
        assert not (project / "out").exists()

    def test_build_failure_exit_code(self, project, fake_compiler, capsys):
        (project / "src" / "beta" / "b.c").write_text("#error nope\n")
        with patch("treebuild.cli.GccCompiler", return_value=fake_compiler):
            code = _run(["build", project / "src", project / "out", "-c", project / ".config", "--no-tui"])

        assert code == 1
        out = capsys.readouterr().out
        assert "Build failed" in out
        assert "[compile]" in out
        assert "not archived (aggregate:beta/built-in.a failed)" in out

    def test_missing_root_descriptor_is_configuration_error(self, project, fake_compiler, capsys):
        (project / "src" / "Kbuild").unlink()
        with patch("treebuild.cli.GccCompiler", return_value=fake_compiler):
            code = _run(["build", project / "src", project / "out", "-c", project / ".config", "--no-tui"])

        assert code == 1
        assert "Configuration error" in capsys.readouterr().out
        assert fake_compiler.compiled == []

    def test_malformed_config(self, project, fake_compiler, capsys):
        (project / ".config").write_text("this is not kconfig\n")
        with patch("treebuild.cli.GccCompiler", return_value=fake_compiler):
            code = _run(["build", project / "src", project / "out", "-c", project / ".config", "--no-tui"])

        assert code == 1
        assert "Malformed configuration line 1" in capsys.readouterr().out

    def test_log_file_receives_output(self, project, fake_compiler):
        log_path = project / "build.log"
        with patch("treebuild.cli.GccCompiler", return_value=fake_compiler):
            code = _run(["build", project / "src", project / "out", "-c", project / ".config", "--no-tui", "--log-file", log_path])

        assert code == 0
        assert "Build time:" in log_path.read_text()

    def test_missing_source_dir(self, project):
        assert _run(["build", project / "nope", project / "out", "-c", project / ".config"]) == 2

    def test_missing_config_file(self, project):
        assert _run(["build", project / "src", project / "out", "-c", project / "missing.config"]) == 2

    def test_invalid_job_count(self, project):
        assert _run(["build", project / "src", project / "out", "-c", project / ".config", "-j", "0"]) == 2


class TestCLIResolve:
    """Tests for the 'treebuild resolve' command."""

    def test_prints_tree(self, project, capsys):
        code = _run(["resolve", project / "src", project / "out", "-c", project / ".config"])

        assert code == 0
        lines = capsys.readouterr().out.splitlines()
        assert lines == [
            "./ -> built-in.a",
            "  alpha.c -> alpha.o",
            "  beta/ -> beta/built-in.a",
            "    b.c -> beta/b.o",
        ]
        assert not (project / "out").exists()

    def test_disabled_flag_prunes_subtree(self, project, capsys):
        (project / ".config").write_text("# CONFIG_BETA is not set\n")
        code = _run(["resolve", project / "src", "-c", project / ".config"])

        assert code == 0
        assert "beta" not in capsys.readouterr().out

    def test_verbose_shows_ccflags(self, project, capsys):
        code = _run(["resolve", project / "src", "-c", project / ".config", "-v"])

        assert code == 0
        assert "ccflags: -DBETA" in capsys.readouterr().out

    def test_unresolvable_entry(self, project, capsys):
        (project / "src" / "alpha.c").unlink()
        code = _run(["resolve", project / "src", "-c", project / ".config"])

        assert code == 1
        out = capsys.readouterr().out
        assert "Resolution failed" in out
        assert "No source file for 'alpha.o'" in out


class TestCLIClean:
    """Tests for the 'treebuild clean' command."""

    def test_clean_after_build(self, project, fake_compiler):
        with patch("treebuild.cli.GccCompiler", return_value=fake_compiler):
            assert _run(["build", project / "src", project / "out", "-c", project / ".config", "--no-tui"]) == 0

        assert _run(["clean", project / "out", "--dry-run"]) == 0
        assert (project / "out" / "built-in.a").exists()

        assert _run(["clean", project / "out"]) == 0
        assert not (project / "out" / "built-in.a").exists()
        assert not (project / "out" / "beta").exists()


class TestCLIMisc:
    def test_version(self, capsys):
        assert _run(["--version"]) == 0
        assert __version__ in capsys.readouterr().out

    def test_no_command_shows_help(self, capsys):
        assert _run([]) == 0
        assert "usage: treebuild" in capsys.readouterr().out
