"""
Tests for pipewright.cli
==========================

The ``run`` tests execute real shell commands with the local executor.

What's Being Tested:
    - validate: success output and error reporting
    - run: job table, exit status, failure logs, --var and --tag handling
    - purge: reports purged artifacts
    - Log level from --log-level or the log_level setting
"""

import logging
import textwrap

import pytest
import structlog
from click.testing import CliRunner

from pipewright import __version__
from pipewright.cli import main

DEFINITION = textwrap.dedent("""\
    stages: [build, test, deploy]

    build:
      stage: build
      script:
        - mkdir -p dist
        - echo "built for $CI_COMMIT_REF_NAME" > dist/app.txt
      artifacts:
        paths: [dist]

    test:
      stage: test
      dependencies: [build]
      script:
        - grep "built for" dist/app.txt
        - test "$GREETING" = hello

    deploy:
      stage: deploy
      script: [echo deploying]
      only: [main]
""")


@pytest.fixture(autouse=True)
def _restore_logging():
    """The CLI reconfigures logging onto CliRunner's streams."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """Empty working directory holding the pipeline definition."""
    monkeypatch.chdir(tmp_path)
    (tmp_path / ".pipewright.yml").write_text(DEFINITION)
    return tmp_path


@pytest.fixture
def cli():
    return CliRunner()


class TestValidate:

    def test_valid_definition(self, cli, workdir) -> None:
        result = cli.invoke(main, ["validate", ".pipewright.yml"])

        assert result.exit_code == 0
        assert "Pipeline 'pipewright' is valid" in result.output
        assert "  test: test" in result.output

    def test_invalid_definition(self, cli, workdir) -> None:
        (workdir / "broken.yml").write_text(
            "build:\n  stage: build\n  script: [make]\n  dependencies: [ghost]\n"
        )

        result = cli.invoke(main, ["validate", "broken.yml"])

        assert result.exit_code == 1
        assert "invalid pipeline" in result.output
        assert "ghost" in result.output

    def test_version(self, cli) -> None:
        result = cli.invoke(main, ["--version"])
        assert __version__ in result.output


class TestRun:

    def test_feature_branch(self, cli, workdir) -> None:
        result = cli.invoke(
            main, ["run", ".pipewright.yml", "--ref", "feature/x", "--var", "GREETING=hello"]
        )

        assert result.exit_code == 0, result.output
        assert "(pipewright @ feature/x)" in result.output
        assert "deploy" in result.output and "skipped" in result.output
        assert "Run succeeded" in result.output

    def test_failure_prints_logs(self, cli, workdir) -> None:
        result = cli.invoke(main, ["run", ".pipewright.yml", "--ref", "main"])

        assert result.exit_code == 1
        assert "--- test:" in result.output
        assert '$ test "$GREETING" = hello' in result.output
        assert "blocked" in result.output
        assert "Run failed" in result.output

    def test_tag_event(self, cli, workdir) -> None:
        result = cli.invoke(
            main, ["run", ".pipewright.yml", "--ref", "v1.0", "--tag", "--var", "GREETING=hello"]
        )
        assert result.exit_code == 0, result.output
        assert "(pipewright @ v1.0)" in result.output

    def test_bad_variable(self, cli, workdir) -> None:
        result = cli.invoke(main, ["run", ".pipewright.yml", "--ref", "main", "--var", "NOEQUALS"])
        assert result.exit_code == 2
        assert "KEY=VALUE" in result.output

    def test_missing_settings_file(self, cli, workdir) -> None:
        result = cli.invoke(
            main, ["run", ".pipewright.yml", "--ref", "main", "--config", "absent.yaml"]
        )
        assert result.exit_code == 1
        assert "absent.yaml" in result.output


class TestPurge:

    def test_purge_empty_store(self, cli, workdir) -> None:
        result = cli.invoke(main, ["purge"])
        assert result.exit_code == 0, result.output
        assert "Purged 0 expired artifacts" in result.output


class TestLogLevel:
    """--log-level wins; otherwise the log_level setting applies."""

    @pytest.fixture
    def logging_calls(self, monkeypatch):
        calls: list[tuple[str, bool]] = []
        monkeypatch.setattr(
            "pipewright.cli.configure_logging",
            lambda level, json_format=False: calls.append((level, json_format)),
        )
        return calls

    def test_environment_setting_is_the_default(self, cli, workdir, monkeypatch, logging_calls) -> None:
        monkeypatch.setenv("PIPEWRIGHT_LOG_LEVEL", "ERROR")

        result = cli.invoke(main, ["purge"])

        assert result.exit_code == 0, result.output
        assert logging_calls == [("ERROR", False)]

    def test_settings_file_level(self, cli, workdir, logging_calls) -> None:
        (workdir / "settings.yaml").write_text("log_level: DEBUG\n")

        result = cli.invoke(main, ["purge", "--config", "settings.yaml"])

        assert result.exit_code == 0, result.output
        assert logging_calls == [("DEBUG", False)]

    def test_option_overrides_setting(self, cli, workdir, monkeypatch, logging_calls) -> None:
        monkeypatch.setenv("PIPEWRIGHT_LOG_LEVEL", "DEBUG")

        result = cli.invoke(main, ["--log-level", "warning", "--json-logs", "purge"])

        assert result.exit_code == 0, result.output
        assert logging_calls == [("warning", True)]

    def test_validate_reads_environment(self, cli, workdir, monkeypatch, logging_calls) -> None:
        monkeypatch.setenv("PIPEWRIGHT_LOG_LEVEL", "CRITICAL")

        result = cli.invoke(main, ["validate", ".pipewright.yml"])

        assert result.exit_code == 0, result.output
        assert logging_calls == [("CRITICAL", False)]

    def test_unknown_level(self, cli, workdir) -> None:
        result = cli.invoke(main, ["--log-level", "LOUD", "purge"])
        assert result.exit_code == 2
        assert "Unknown log level" in result.output
