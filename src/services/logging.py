"""
Logging - Console setup, secret redaction and daily log files.

Every record that reaches the console passes through RedactingFilter, and
every line written to disk goes through redact(), so recovery phrases and
key material never leave the process in clear text. Files are named
x1keystore-YYYY-MM-DD.log and live under utils.get_logs_dir().
"""

from collections import deque
from datetime import datetime, timedelta
from functools import lru_cache
from pathlib import Path
from typing import Optional
import logging
import re

from mnemonic import Mnemonic

from utils import get_logs_dir


LOG_PREFIX = "x1keystore-"
LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
LOG_DATE_FORMAT = "%Y-%m-%d"
REDACTED = "[REDACTED]"

# Applied in order after recovery phrases; longer secrets first so a key
# is not half-redacted as hex
_SECRET_PATTERNS = [
    # 32- or 64-element byte arrays (seeds, secret keys)
    re.compile(r"\[\s*(?:\d{1,3}\s*,\s*){31}\d{1,3}\s*\]"),
    re.compile(r"\[\s*(?:\d{1,3}\s*,\s*){63}\d{1,3}\s*\]"),
    re.compile(r"\b[0-9a-fA-F]{64,}\b"),
    # base58 or base64 blobs
    re.compile(r"[A-Za-z0-9+/]{43,}={0,2}"),
]


_WORD = re.compile(r"\b[a-z]+\b")
PHRASE_LENGTHS = (24, 21, 18, 15, 12)


@lru_cache(maxsize=1)
def _english() -> Mnemonic:
    return Mnemonic("english")


def _wordlist_runs(text: str) -> list[list[re.Match]]:
    """Runs of 12+ BIP-39 words separated only by whitespace."""
    words = set(_english().wordlist)
    runs: list[list[re.Match]] = []
    run: list[re.Match] = []
    for match in _WORD.finditer(text):
        if match.group() not in words:
            if len(run) >= PHRASE_LENGTHS[-1]:
                runs.append(run)
            run = []
            continue
        if run and not text[run[-1].end():match.start()].isspace():
            if len(run) >= PHRASE_LENGTHS[-1]:
                runs.append(run)
            run = []
        run.append(match)
    if len(run) >= PHRASE_LENGTHS[-1]:
        runs.append(run)
    return runs


def _phrase_spans(run: list[re.Match]) -> list[tuple[int, int]]:
    """
    Character spans of checksum-valid phrases inside a run, scanning from
    the end. A run holding no valid phrase is redacted whole.
    """
    spans = []
    end = len(run)
    while end >= PHRASE_LENGTHS[-1]:
        for size in PHRASE_LENGTHS:
            window = run[end - size:end] if size <= end else []
            if window and _english().check(" ".join(m.group() for m in window)):
                spans.append((window[0].start(), window[-1].end()))
                end -= size
                break
        else:
            end -= 1
    return spans or [(run[0].start(), run[-1].end())]


def _redact_phrases(text: str) -> str:
    spans = [span for run in _wordlist_runs(text) for span in _phrase_spans(run)]
    for start, end in sorted(spans, reverse=True):
        text = text[:start] + REDACTED + text[end:]
    return text


def redact(text: str) -> str:
    """Replace anything that looks like key material with a marker."""
    text = _redact_phrases(text)
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(REDACTED, text)
    return text


class RedactingFilter(logging.Filter):
    """Scrubs mnemonics, keys and byte arrays from records before output."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            # Args are folded in so a handler cannot re-expand them
            record.msg = cleaned
            record.args = None
        return True


def configure_logging(level: int = logging.INFO) -> None:
    """
    Attach a redacting console handler to the root logger.

    Does nothing when the host application already configured logging.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%H:%M:%S'))
    handler.addFilter(RedactingFilter())
    root.setLevel(level)
    root.addHandler(handler)


# ============================================
# Daily files
# ============================================

def get_log_file_path(date: Optional[datetime] = None) -> Path:
    """Log file for `date` (today when omitted)."""
    day = (date or datetime.now()).strftime(LOG_DATE_FORMAT)
    return get_logs_dir() / f"{LOG_PREFIX}{day}.log"


def append_log(message: str, retention_days: int = 0) -> None:
    """
    Append one redacted, timestamped line to today's file.

    retention_days <= 0 means file logging is off.
    """
    if retention_days <= 0:
        return

    line = f"[{datetime.now():%Y-%m-%d %H:%M:%S}] {redact(message)}\n"
    try:
        with open(get_log_file_path(), 'a', encoding='utf-8') as f:
            f.write(line)
    except OSError as e:
        logging.getLogger(__name__).debug(f"Could not write log file: {e}")


def _tail(file_path: Path, n: int) -> list[str]:
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            return [line.rstrip('\n') for line in deque(f, maxlen=n)]
    except OSError:
        return []


def load_recent_logs(max_lines: int = 500) -> list[str]:
    """Up to `max_lines` most recent lines from today and yesterday, oldest first."""
    collected: list[str] = []
    now = datetime.now()
    for day in (now, now - timedelta(days=1)):
        wanted = max_lines - len(collected)
        if wanted <= 0:
            break
        path = get_log_file_path(day)
        if path.exists():
            collected = _tail(path, wanted) + collected
    return collected


def _file_date(file_path: Path) -> Optional[datetime]:
    try:
        return datetime.strptime(file_path.stem[len(LOG_PREFIX):], LOG_DATE_FORMAT)
    except ValueError:
        return None


def cleanup_old_logs(retention_days: int) -> int:
    """
    Remove daily files dated before today minus `retention_days`.

    Files whose name carries no date are left alone. Returns the number removed.
    """
    if retention_days < 0:
        return 0

    midnight = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)
    cutoff = midnight - timedelta(days=retention_days)
    removed = 0
    for file_path in get_logs_dir().glob(f"{LOG_PREFIX}*.log"):
        file_date = _file_date(file_path)
        if file_date is None or file_date >= cutoff:
            continue
        try:
            file_path.unlink()
            removed += 1
        except OSError as e:
            logging.getLogger(__name__).debug(f"Could not remove {file_path.name}: {e}")
    return removed
