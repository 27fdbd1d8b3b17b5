"""
Tests for the click command-line interface.
"""
import json
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from llamactl.frameworks_drivers.process_lifecycle_manager import ProcessLifecycleManager, StopAllResult
from llamactl.frameworks_drivers.run_capture_engine import RunCaptureEngine
from llamactl.interface_adapters.cli import AppContext, cli
from llamactl.shared.errors import SignalResolutionError
from llamactl.shared.health_checker import HealthChecker


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def app(app_paths, models_dir, make_model):
    app_paths.config_dir.mkdir(parents=True)
    app_paths.config_file.write_text(json.dumps({
        "llama_cpp_path": "/opt/llama/llama-server",
        "models_dir": str(models_dir),
        "default_port": 8080,
    }))
    make_model("llama-3-8b", mtime=2_000)
    make_model("Qwen2.5-7B-Instruct", mtime=1_000)
    return AppContext(paths=app_paths)


def invoke(runner, app, args):
    return runner.invoke(cli, args, obj=app)


class TestStatus:

    def test_empty(self, runner, app):
        result = invoke(runner, app, ["status"])
        assert result.exit_code == 0
        assert "No server state recorded yet." in result.output

    def test_json(self, runner, app):
        app.manager.mark_running("llama-3-8b", 8080, "daemon")

        result = invoke(runner, app, ["status", "--json"])

        assert result.exit_code == 0
        document = json.loads(result.output)
        assert document["servers"][0]["model"] == "llama-3-8b"
        assert document["servers"][0]["pid"] is None


class TestList:

    def test_list(self, runner, app):
        app.manager.mark_running("llama-3-8b", 8080)

        result = invoke(runner, app, ["list"])

        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert lines[0].startswith("llama-3-8b")
        assert lines[0].endswith("[running]")
        assert lines[1].startswith("Qwen2.5-7B-Instruct")

    def test_list_empty(self, runner, app, models_dir):
        for path in models_dir.iterdir():
            path.unlink()
        result = invoke(runner, app, ["list"])
        assert "No models found" in result.output


class TestStop:

    def test_no_match(self, runner, app):
        app.manager.mark_running("Qwen2.5-7B-Instruct", 8081)

        result = invoke(runner, app, ["stop", "mistral"])

        assert result.exit_code == 1
        assert "No running server found matching: mistral" in result.output
        assert "  Qwen2.5-7B-Instruct" in result.output

    def test_stop_one(self, runner, app):
        app.manager.mark_running("llama-3-8b", 8080)

        with patch.object(ProcessLifecycleManager, "stop_one", return_value=4242) as stop_one:
            result = invoke(runner, app, ["stop", "llama"])

        assert result.exit_code == 0
        assert "Stopped llama-3-8b (PID 4242)" in result.output
        assert stop_one.call_args.args[0].model == "llama-3-8b"

    def test_stop_one_without_pid(self, runner, app):
        app.manager.mark_running("llama-3-8b", None)

        with patch.object(ProcessLifecycleManager, "stop_one", side_effect=SignalResolutionError("llama-3-8b")):
            result = invoke(runner, app, ["stop", "llama"])

        assert result.exit_code == 1
        assert "no PID found for llama-3-8b" in result.output

    def test_stop_all_nothing_running(self, runner, app):
        result = invoke(runner, app, ["stop", "all"])
        assert result.exit_code == 0
        assert "No servers running" in result.output

    def test_stop_all_summary(self, runner, app):
        outcome = StopAllResult(stopped=["a", "b"], failures={"c": "no PID found for c; cannot send signal"})

        with patch.object(ProcessLifecycleManager, "stop_all", return_value=outcome):
            result = invoke(runner, app, ["stop", "all"])

        assert result.exit_code == 1
        assert "Stopped 2 server(s)" in result.output
        assert "c: no PID found" in result.output


class TestStart:

    def test_start(self, runner, app, app_paths):
        log_path = app_paths.log_file_for("llama-3-8b")
        with patch.object(ProcessLifecycleManager, "launch_detached", return_value=(4242, log_path)) as launch:
            result = invoke(runner, app, ["start", "llama", "--port", "9000", "-ngl", "99"])

        assert result.exit_code == 0, result.output
        assert "Started llama-3-8b on port 9000 (PID 4242)" in result.output
        model, command, port = launch.call_args.args
        assert model == "llama-3-8b"
        assert port == 9000
        assert command[-4:] == ["-ngl", "99", "--port", "9000"]

    def test_start_uses_default_port(self, runner, app, app_paths):
        with patch.object(ProcessLifecycleManager, "launch_detached",
                          return_value=(4242, app_paths.log_file_for("llama-3-8b"))) as launch:
            invoke(runner, app, ["start", "llama"])
        assert launch.call_args.args[2] == 8080

    def test_start_conflict(self, runner, app):
        app.manager.mark_running("llama-3-8b", 8080, "daemon")

        with patch("llamactl.frameworks_drivers.process_lifecycle_manager.subprocess.Popen") as mock_popen:
            result = invoke(runner, app, ["start", "llama"])

        assert result.exit_code == 1
        assert "already running" in result.output
        mock_popen.assert_not_called()

    @pytest.mark.parametrize("healthy,exit_code", [(True, 0), (False, 1)])
    def test_start_wait(self, runner, app, app_paths, healthy, exit_code):
        with patch.object(ProcessLifecycleManager, "launch_detached",
                          return_value=(4242, app_paths.log_file_for("llama-3-8b"))), \
                patch.object(HealthChecker, "wait_until_healthy", return_value=healthy) as wait:
            result = invoke(runner, app, ["start", "llama", "--wait", "--timeout", "30"])

        assert result.exit_code == exit_code
        wait.assert_called_once_with("127.0.0.1", 8080, timeout=30.0)


class TestRun:

    def test_run_passes_extra_args_verbatim(self, runner, app):
        with patch.object(RunCaptureEngine, "run", return_value=0) as run:
            result = invoke(runner, app, ["run", "llama", "-c", "8192", "--port", "9000"])

        assert result.exit_code == 0
        run.assert_called_once_with("llama-3-8b", ["-c", "8192", "--port", "9000"])

    def test_run_propagates_exit_code(self, runner, app):
        with patch.object(RunCaptureEngine, "run", return_value=3):
            result = invoke(runner, app, ["run", "llama"])

        assert result.exit_code == 3
        assert "llama-server exited with code 3" in result.output

    def test_run_interrupted(self, runner, app):
        with patch.object(RunCaptureEngine, "run", return_value=130):
            result = invoke(runner, app, ["run", "llama"])
        assert result.exit_code == 130

    def test_run_unknown_model(self, runner, app):
        result = invoke(runner, app, ["run", "mistral"])

        assert result.exit_code == 1
        assert "No model found matching: mistral" in result.output
        assert "Available models:" in result.output
        assert "  llama-3-8b" in result.output

    def test_run_ambiguous(self, runner, app, make_model):
        make_model("llama-3-70b")
        result = invoke(runner, app, ["run", "llama"])
        assert result.exit_code == 1
        assert "Multiple models match" in result.output


class TestInfo:

    def test_no_cached_info(self, runner, app):
        result = invoke(runner, app, ["info"])
        assert result.exit_code == 0
        assert "No cached model info found." in result.output

    def test_info_for_model_without_cache(self, runner, app):
        result = invoke(runner, app, ["info", "llama"])
        assert result.exit_code == 0
        assert "No cached info for model: llama-3-8b" in result.output


class TestConfiguration:

    def test_invalid_config(self, runner, app, app_paths):
        app_paths.config_file.write_text("{not json")
        result = invoke(runner, app, ["list"])
        assert result.exit_code == 1
        assert "Invalid configuration file" in result.output

    def test_config_created_on_first_use(self, runner, temp_dir):
        from llamactl.frameworks_drivers.config import AppPaths

        paths = AppPaths(config_dir=temp_dir / "fresh" / "config", cache_dir=temp_dir / "fresh" / "cache")
        result = runner.invoke(cli, ["status"], obj=AppContext(paths=paths))

        assert result.exit_code == 0
        assert not paths.config_file.exists()

        runner.invoke(cli, ["list"], obj=AppContext(paths=paths))
        assert paths.config_file.exists()
