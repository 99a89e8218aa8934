"""
Tests for services/logging.py

Tests cover:
- Redaction of recovery phrases, byte arrays and encoded keys
- Daily log files: append, load and cleanup
"""

import logging
from datetime import datetime, timedelta

import pytest

from conftest import ABANDON_MNEMONIC
from services.logging import (
    LOG_PREFIX,
    REDACTED,
    RedactingFilter,
    configure_logging,
    append_log,
    cleanup_old_logs,
    get_log_file_path,
    load_recent_logs,
    redact,
)
from svm.codec import b58encode


@pytest.fixture
def app_home(tmp_path, monkeypatch):
    monkeypatch.setenv("X1KEYSTORE_HOME", str(tmp_path))
    return tmp_path


class TestRedact:
    """redact."""

    def test_mnemonic(self):
        assert redact(f"phrase: {ABANDON_MNEMONIC}") == f"phrase: {REDACTED}"

    def test_ordinary_sentence_kept(self):
        text = "Sending five tokens to the recipient now"
        assert redact(text) == text

    def test_long_lowercase_sentence_kept(self):
        text = ("refreshed balances for the wallets and then checked the pending "
                "payments against the latest blocks after waiting several seconds")
        assert redact(text) == text

    def test_neighbouring_wordlist_words_kept(self):
        text = f"phrase {ABANDON_MNEMONIC} (imported)"
        assert redact(text) == f"phrase {REDACTED} (imported)"

    def test_phrase_with_bad_checksum(self):
        typo = " ".join(["abandon"] * 12)
        assert redact(f"seed={typo}") == f"seed={REDACTED}"

    @pytest.mark.parametrize("size", [32, 64])
    def test_byte_arrays(self, size):
        array = "[" + ", ".join(str(i) for i in range(size)) + "]"
        assert redact(f"seed={array}") == f"seed={REDACTED}"

    def test_short_array_kept(self):
        assert redact("[1, 2, 3]") == "[1, 2, 3]"

    def test_hex_key(self):
        assert redact("key " + "ab" * 32) == f"key {REDACTED}"

    def test_base58_secret(self):
        secret = b58encode(bytes(range(1, 65)))
        assert secret not in redact(f"secret {secret} end")

    def test_shortened_address_kept(self):
        assert redact("Sent to Abcd...wxyz") == "Sent to Abcd...wxyz"


class TestRedactingFilter:
    """Records are scrubbed before any handler formats them."""

    def test_args_folded_into_message(self):
        record = logging.LogRecord("x1", logging.INFO, __file__, 1, "phrase %s", (ABANDON_MNEMONIC,), None)
        assert RedactingFilter().filter(record) is True
        assert record.getMessage() == f"phrase {REDACTED}"
        assert record.args is None

    def test_clean_record_untouched(self):
        record = logging.LogRecord("x1", logging.INFO, __file__, 1, "unlocked %s", ("W001",), None)
        RedactingFilter().filter(record)
        assert record.msg == "unlocked %s"
        assert record.args == ("W001",)


class TestLogFiles:
    """Daily log persistence."""

    def test_disabled_when_no_retention(self, app_home):
        append_log("hello", retention_days=0)
        assert not get_log_file_path().exists()

    def test_append_and_load(self, app_home):
        append_log("first", retention_days=7)
        append_log(f"mnemonic {ABANDON_MNEMONIC}", retention_days=7)
        lines = load_recent_logs()
        assert len(lines) == 2
        assert lines[0].endswith("] first")
        assert "abandon" not in lines[1]

    def test_load_includes_yesterday(self, app_home):
        yesterday = get_log_file_path(datetime.now() - timedelta(days=1))
        yesterday.write_text("[old] one\n[old] two\n", encoding="utf-8")
        append_log("today", retention_days=1)
        lines = load_recent_logs(max_lines=2)
        assert lines[0] == "[old] two"
        assert lines[1].endswith("] today")

    def test_load_limit(self, app_home):
        for i in range(5):
            append_log(f"line {i}", retention_days=1)
        lines = load_recent_logs(max_lines=3)
        assert [line.split("] ")[1] for line in lines] == ["line 2", "line 3", "line 4"]
        assert load_recent_logs(max_lines=0) == []

    def test_cleanup(self, app_home):
        old = get_log_file_path(datetime.now() - timedelta(days=10))
        recent = get_log_file_path(datetime.now() - timedelta(days=2))
        stray = old.parent / f"{LOG_PREFIX}not-a-date.log"
        for path in (old, recent, stray):
            path.write_text("x\n", encoding="utf-8")
        assert cleanup_old_logs(7) == 1
        assert not old.exists()
        assert recent.exists()
        assert stray.exists()

    def test_cleanup_negative_retention(self, app_home):
        assert cleanup_old_logs(-1) == 0


class TestConfigureLogging:
    """Console handler setup."""

    def test_installs_redacting_handler(self, monkeypatch):
        root = logging.getLogger()
        monkeypatch.setattr(root, "handlers", [])
        monkeypatch.setattr(root, "level", root.level)
        configure_logging(logging.DEBUG)
        assert len(root.handlers) == 1
        assert any(isinstance(f, RedactingFilter) for f in root.handlers[0].filters)
        assert root.level == logging.DEBUG

    def test_existing_handlers_left_alone(self, monkeypatch):
        root = logging.getLogger()
        existing = logging.NullHandler()
        monkeypatch.setattr(root, "handlers", [existing])
        configure_logging()
        assert root.handlers == [existing]
