"""
Shared utility functions for x1-keystore.

Contains path helpers, file permission handling and display formatting
used across packages.
"""

import os
from decimal import Decimal
from pathlib import Path

# Owner read/write only (0600)
SECURE_FILE_MODE = 0o600

APP_HOME_ENV = "X1KEYSTORE_HOME"


def get_app_dir() -> Path:
    """
    Get the application data directory.

    $X1KEYSTORE_HOME wins when set; otherwise ~/.x1keystore.
    """
    override = os.environ.get(APP_HOME_ENV)
    if override:
        app_dir = Path(override).expanduser()
    else:
        app_dir = Path.home() / ".x1keystore"

    app_dir.mkdir(parents=True, exist_ok=True)
    return app_dir


def get_store_path() -> Path:
    """Get path to the persistent key-value store file."""
    return get_app_dir() / "store.json"


def get_logs_dir() -> Path:
    """Get the logs directory."""
    logs_dir = get_app_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


def set_secure_permissions(filepath: Path) -> None:
    """
    Set restrictive file permissions on Unix systems.

    Sets file to mode 0600 (owner read/write only) to protect the encrypted
    envelope and auth hash. No-op on Windows (NTFS uses ACLs, not Unix
    permissions).
    """
    if os.name == 'posix':
        try:
            os.chmod(filepath, SECURE_FILE_MODE)
        except OSError:
            # Best effort - don't fail save operation if chmod fails
            pass


def format_address(address: str, chars: int = 4) -> str:
    """Format a base58 address as Abcd...wxyz"""
    if not address or len(address) <= chars * 2 + 3:
        return address
    return f"{address[:chars]}...{address[-chars:]}"


def format_balance(raw: int, decimals: int = 9, max_fraction: int = 4) -> str:
    """
    Render an integer amount in base units as a decimal string.

    format_balance(1_500_000_000) -> "1.5"
    """
    value = Decimal(int(raw)).scaleb(-decimals)
    quantum = Decimal(1).scaleb(-max_fraction)
    text = format(value.quantize(quantum), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"
