import asyncio

from sandbox_agent.observability.metrics import RuntimeMetrics
from sandbox_agent.security.patterns import OUTPUT_BLOCKED_MARKER
from sandbox_agent.services.executor import CommandExecutor, is_background_command


def _executor(**overrides) -> tuple[CommandExecutor, RuntimeMetrics]:
    metrics = RuntimeMetrics()
    options = {"timeout_seconds": 5, "background_check_seconds": 0.2}
    options.update(overrides)
    return CommandExecutor(metrics=metrics, **options), metrics


def test_is_background_command():
    assert is_background_command("npm run dev &")
    assert is_background_command("sleep 5 &  ")
    assert not is_background_command("make && make test")
    assert not is_background_command("echo a & echo b")


def test_run_returns_stdout(tmp_path):
    executor, metrics = _executor()
    result = executor.run("echo hello", tmp_path)
    assert result.success is True
    assert result.output == "hello"
    assert metrics.commands_executed_total == 1


def test_run_creates_missing_working_directory(tmp_path):
    executor, _ = _executor()
    cwd = tmp_path / "fresh" / "workspace"
    result = executor.run("pwd", cwd)
    assert result.success is True
    assert result.output == str(cwd)


def test_empty_output_placeholder(tmp_path):
    executor, _ = _executor()
    assert executor.run("true", tmp_path).output == "(empty output)"


def test_non_zero_exit_reports_stderr(tmp_path):
    executor, metrics = _executor()
    result = executor.run("echo boom >&2; exit 3", tmp_path)
    assert result.success is False
    assert result.error.startswith("Exit 3: boom")
    assert metrics.commands_failed_total == 1


def test_timeout_kills_command(tmp_path):
    executor, _ = _executor(timeout_seconds=1)
    result = executor.run("sleep 10", tmp_path)
    assert result.success is False
    assert result.error == "Command timed out after 1s"


def test_output_byte_cap(tmp_path):
    executor, _ = _executor(max_output_bytes=1000)
    result = executor.run("yes | head -c 5000", tmp_path)
    assert result.success is False
    assert result.error == "Command output exceeded 1000 bytes"


def test_long_output_truncated(tmp_path):
    executor, _ = _executor(max_output_chars=100)
    result = executor.run("seq 1 1000", tmp_path)
    assert result.success is True
    assert "...(truncated)..." in result.output
    assert result.output.startswith("1\n2\n")
    assert result.output.endswith("1000")


def test_output_secrets_redacted(tmp_path):
    executor, metrics = _executor()
    result = executor.run("echo API_KEY=abcdef123456", tmp_path)
    assert result.output == "API_KEY=[REDACTED]"
    assert metrics.sanitization_blocks_total == 0


def test_encoded_secret_output_suppressed(tmp_path):
    executor, metrics = _executor()
    result = executor.run("printf 'TELEGRAM_TOKEN=123456789:AAbbCCdd' | base64", tmp_path)
    assert result.output == OUTPUT_BLOCKED_MARKER
    assert metrics.sanitization_blocks_total == 1


def test_background_command_keeps_running(tmp_path):
    executor, _ = _executor()
    result = executor.run("sleep 3 &", tmp_path)
    assert result.success is True
    assert result.output.startswith("Started in background (pid ")


def test_background_command_that_crashes(tmp_path):
    executor, _ = _executor()
    result = executor.run("exit 3 &", tmp_path)
    assert result.success is False
    assert result.error == "Background command crashed immediately (exit 3)"


def test_background_command_that_finishes(tmp_path):
    executor, _ = _executor()
    result = executor.run("true &", tmp_path)
    assert result.success is True
    assert "finished immediately" in result.output


def test_run_async(tmp_path):
    executor, _ = _executor()
    result = asyncio.run(executor.run_async("echo async", tmp_path))
    assert result.output == "async"
