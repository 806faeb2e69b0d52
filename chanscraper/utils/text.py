"""テキスト・数値の正規化ユーティリティ."""

from __future__ import annotations

import html
import re
from datetime import datetime
from typing import Any

_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")
_INT_RE = re.compile(r"-?[0-9]+")
_NON_DIGIT_RE = re.compile(r"[^0-9]+")


def normalize_board_code(code: str) -> str:
    """板コードの前後の空白とスラッシュを除去"""
    return code.strip().strip("/").strip()


def normalize_extension(ext: str | None) -> str:
    """拡張子を先頭のドットなし・小文字に正規化"""
    raw = (ext or "").strip()
    if raw.startswith("."):
        raw = raw[1:]
    return raw.lower()


def clean_html(text: str | None) -> str:
    """HTML断片をプレーンテキストに変換"""
    if not text:
        return ""
    result = _BR_RE.sub("\n", text)
    result = _TAG_RE.sub("", result)
    return html.unescape(result).replace("\xa0", " ").strip()


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def as_int(value: Any) -> int | None:
    """JSONの数値・文字列を整数に変換 (変換できなければNone)"""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        stripped = value.strip()
        if _INT_RE.fullmatch(stripped):
            return int(stripped)
    return None


def as_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def digits_only(text: str | None) -> int | None:
    """数字以外を除去して整数化"""
    digits = _NON_DIGIT_RE.sub("", text or "")
    return int(digits) if digits else None


def parse_iso8601(value: Any) -> int | None:
    """ISO8601文字列をUNIX秒に変換"""
    if not isinstance(value, str) or not value:
        return None
    candidate = value.strip()
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        return int(datetime.fromisoformat(candidate).timestamp())
    except ValueError:
        return None


def decode_html_bytes(data: bytes) -> str:
    """HTMLのバイト列を UTF-8 → Latin-1 → CP1251 の順でデコード"""
    for encoding in ("utf-8", "latin-1", "cp1251"):
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    return data.decode("utf-8", errors="replace")
