"""Small helpers shared by the engine, CLI printers and MCP tools."""
import datetime
import shlex
import sys

from typing import Any, Dict, Optional


def utc_now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def quote_remote(value: Any) -> str:
    """Quote a value for interpolation into a device shell command line."""
    return shlex.quote(str(value))


def normalize_category(name: str, aliases: Optional[Dict[str, str]] = None) -> str:
    """Lower-case a category name and resolve any known alias for it.

    ``"file-integrity"`` and ``"fileIntegrity"`` both normalize to
    ``"file_integrity"`` when *aliases* maps them.
    """
    if not isinstance(name, str):
        raise ValueError(f"Category name must be a string, got {type(name).__name__}")
    stripped = name.strip()
    if aliases and stripped in aliases:
        return aliases[stripped]
    lowered = stripped.lower().replace("-", "_")
    if aliases and lowered in aliases:
        return aliases[lowered]
    return lowered


def safe_print(text_to_print, verbose_prefix=""):
    try:
        print(f"{verbose_prefix}{text_to_print}")
    except UnicodeEncodeError:
        output_encoding = sys.stdout.encoding if sys.stdout.encoding else 'utf-8'
        encoded_text = str(text_to_print).encode(output_encoding, errors='backslashreplace').decode(output_encoding, errors='ignore')
        print(f"{verbose_prefix}{encoded_text} (some characters replaced/escaped)")
