"""設定管理ユーティリティ."""

from __future__ import annotations

from pathlib import Path
from typing import Any, TypeVar, cast

import yaml
from loguru import logger

T = TypeVar("T")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)


class Config:
    """設定管理クラス."""

    def __init__(self, config_path: str | Path | None = None) -> None:
        if config_path is None:
            config_path = (
                Path(__file__).parent.parent.parent / "config" / "settings.yaml"
            )

        self.config_path = Path(config_path)
        self._config: dict[str, Any] = {}
        self.load_config()

    def load_config(self) -> None:
        """設定ファイルを読み込み"""
        try:
            if self.config_path.exists():
                with open(self.config_path, encoding="utf-8") as file:
                    self._config = yaml.safe_load(file) or {}
                logger.info("Configuration loaded from {}", self.config_path)
            else:
                logger.warning("Configuration file not found: {}", self.config_path)
                self._config = self._get_default_config()
        except (OSError, yaml.YAMLError) as e:
            logger.error("Error loading configuration: {}", e)
            self._config = self._get_default_config()

    def _get_default_config(self) -> dict[str, Any]:
        """デフォルト設定を返す"""
        return {
            "defaults": {
                "site": "4chan",
                "timeout": 30,
                "output_format": "json",
                "output_dir": "output",
            },
            "http": {
                "user_agent": DEFAULT_USER_AGENT,
                "accept_language": "en-US,en;q=0.9",
            },
            "limits": {
                "sevenchan_max_index_pages": 15,
                "kun_index_minimum_boards": 200,
                "kun_board_search_max_pages": 50,
                "archive_limit": 50,
                "search_snippet_length": 160,
            },
            "media": {
                "mirror_hosts": ["nerv.8kun.top"],
            },
            "logging": {
                "level": "INFO",
                "format": (
                    "{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line}"
                    " - {message}"
                ),
                "file": "logs/chanscraper.log",
                "rotation": "1 day",
                "retention": "7 days",
            },
            "export": {
                "include_media_urls": True,
            },
        }

    def get(self, key: str, default: T | None = None) -> T | None:
        """設定値を取得（ドット記法対応）"""
        keys = key.split(".")
        current: Any = self._config

        try:
            for k in keys:
                current = current[k]
            return cast(T | None, current)
        except (KeyError, TypeError):
            return default

    def _section(self, name: str) -> dict[str, Any]:
        section: Any = self.get(name, {})
        return section if isinstance(section, dict) else {}

    def get_defaults(self) -> dict[str, Any]:
        """デフォルト設定を取得"""
        return self._section("defaults")

    def get_logging_config(self) -> dict[str, Any]:
        """ログ設定を取得"""
        return self._section("logging")

    def get_export_config(self) -> dict[str, Any]:
        """エクスポート設定を取得"""
        return self._section("export")

    def get_limit(self, name: str, default: int) -> int:
        """上限値を取得"""
        value: Any = self.get(f"limits.{name}", default)
        try:
            return int(value)
        except (TypeError, ValueError):
            return default

    @property
    def timeout(self) -> float:
        value: Any = self.get("defaults.timeout", 30)
        try:
            return float(value)
        except (TypeError, ValueError):
            return 30.0

    @property
    def user_agent(self) -> str:
        return str(self.get("http.user_agent", DEFAULT_USER_AGENT))

    @property
    def accept_language(self) -> str:
        return str(self.get("http.accept_language", "en-US,en;q=0.9"))

    @property
    def mirror_hosts(self) -> list[str]:
        hosts: Any = self.get("media.mirror_hosts", ["nerv.8kun.top"])
        if not isinstance(hosts, list):
            return ["nerv.8kun.top"]
        return [str(h) for h in hosts]


# グローバル設定インスタンス
config = Config()
