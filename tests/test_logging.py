"""Tests for logging configuration and utilities."""

import json
import logging
import os
import time

from chime.logging import (
    ComponentFormatter,
    JSONLHandler,
    SecretRedactor,
    prune_old_logs,
)


class TestSecretRedactor:
    """Tests for SecretRedactor class."""

    def test_redacts_telegram_bot_token(self):
        redactor = SecretRedactor()
        text = "Starting bot 123456789:ABCdefGHIjklMNOpqrSTUvwxYZ0123456789"
        result = redactor.redact(text)
        assert "1234" in result
        assert "6789" in result
        assert "ABCdefGHIjklMNOpqrSTUvwxYZ" not in result

    def test_redacts_env_assignment(self):
        redactor = SecretRedactor()
        result = redactor.redact("TELEGRAM_BOT_TOKEN=supersecretvalue123")
        assert "TELEGRAM_BOT_TOKEN=" in result
        assert "supersecretvalue123" not in result

    def test_redacts_database_password(self):
        redactor = SecretRedactor()
        result = redactor.redact("postgresql+asyncpg://chime:hunter2pass@db/chime")
        assert "hunter2pass" not in result
        assert "@db/chime" in result

    def test_short_secret_fully_masked(self):
        redactor = SecretRedactor()
        result = redactor.redact("API_KEY=abcdefgh")
        assert result == "API_KEY=***"

    def test_plain_text_untouched(self):
        redactor = SecretRedactor()
        text = "job_delivered job.id=abc123"
        assert redactor.redact(text) == text

    def test_disabled(self):
        redactor = SecretRedactor(enabled=False)
        text = "TELEGRAM_BOT_TOKEN=supersecretvalue123"
        assert redactor.redact(text) == text


class TestComponentFormatter:
    def _record(self, name: str, msg: str, **extra) -> logging.LogRecord:
        record = logging.LogRecord(name, logging.INFO, __file__, 1, msg, None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_shortens_logger_name(self):
        formatter = ComponentFormatter("%(component)s | %(message)s")
        record = self._record("chime.scheduling.dispatcher", "dispatcher_started")
        assert formatter.format(record) == "scheduling | dispatcher_started"

    def test_appends_extra_fields(self):
        formatter = ComponentFormatter("%(message)s")
        record = self._record("telegram", "job_delivered", **{"job.id": "abc"})
        assert formatter.format(record) == "job_delivered job.id=abc"


class TestJSONLHandler:
    def test_writes_redacted_entry(self, tmp_path):
        handler = JSONLHandler(tmp_path)
        logger = logging.getLogger("chime.test_jsonl")
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        try:
            logger.info(
                "job_delivery_failed",
                extra={"error.message": "BOT_TOKEN=supersecretvalue123"},
            )
        finally:
            logger.removeHandler(handler)
            handler.close()

        files = list(tmp_path.glob("*.jsonl"))
        assert len(files) == 1
        entry = json.loads(files[0].read_text().splitlines()[0])
        assert entry["message"] == "job_delivery_failed"
        assert entry["component"] == "test_jsonl"
        assert entry["level"] == "INFO"
        assert "supersecretvalue123" not in entry["extra"]["error.message"]


class TestPruneOldLogs:
    def test_deletes_only_old_files(self, tmp_path):
        old = tmp_path / "2020-01-01.jsonl"
        new = tmp_path / "today.jsonl"
        other = tmp_path / "notes.txt"
        for path in (old, new, other):
            path.write_text("{}\n")
        stale = time.time() - 30 * 86400
        os.utime(old, (stale, stale))
        os.utime(other, (stale, stale))

        assert prune_old_logs(tmp_path, retention_days=7) == 1
        assert not old.exists()
        assert new.exists()
        assert other.exists()

    def test_missing_dir(self, tmp_path):
        assert prune_old_logs(tmp_path / "missing") == 0
