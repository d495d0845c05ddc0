"""Tests for the command line entry points."""

from __future__ import annotations

import pytest

import kms_envelope.cli
from kms_envelope import KeyServiceError
from kms_envelope.benchmark import main as benchmark_main
from kms_envelope.cli import EXIT_RETRYABLE, main


@pytest.fixture
def env_file(monkeypatch, tmp_path):
    for name in ("KMS_KEY_ID", "S3_BUCKET", "AWS_PROFILE"):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    path = tmp_path / ".env"
    path.write_text("")
    return str(path)


def test_local_seal(env_file, tmp_path):
    src, dst = tmp_path / "plain.txt", tmp_path / "sealed.bin"
    src.write_bytes(b"cli data")

    assert main(["--env-file", env_file, "--local", "seal", str(src), str(dst)]) == 0
    assert dst.exists()
    assert b"cli data" not in dst.read_bytes()


def test_local_compress_seal(env_file, tmp_path):
    src, dst = tmp_path / "plain.txt", tmp_path / "sealed.bin"
    src.write_bytes(b"x" * 10_000)

    assert main(["--env-file", env_file, "--local", "compress-seal", str(src), str(dst)]) == 0
    assert 0 < dst.stat().st_size < 10_000


def test_malformed_input_exits_1(env_file, tmp_path, capsys):
    src, dst = tmp_path / "garbage.bin", tmp_path / "out"
    src.write_bytes(b"\x00\x00")

    assert main(["--env-file", env_file, "--local", "unseal", str(src), str(dst)]) == 1
    assert "error:" in capsys.readouterr().err


def test_missing_key_id_exits_1(env_file, tmp_path, capsys):
    src = tmp_path / "plain.txt"
    src.write_bytes(b"data")

    assert main(["--env-file", env_file, "seal", str(src), str(tmp_path / "out")]) == 1
    assert "kms_key_id" in capsys.readouterr().err


def test_retryable_error_exit_code(env_file, tmp_path, monkeypatch):
    async def failing_run(args, settings):
        raise KeyServiceError("throttled", retryable=True)

    monkeypatch.setattr(kms_envelope.cli, "_run", failing_run)
    code = main(["--env-file", env_file, "--local", "seal", "a", "b"])
    assert code == EXIT_RETRYABLE


def test_benchmark_runs(capsys):
    benchmark_main(["--sizes", "0,1024", "--iterations", "2"])
    out = capsys.readouterr().out
    assert "BENCHMARK COMPLETE" in out
