"""ドメイン単位のクッキーストア."""

from __future__ import annotations

from loguru import logger
from pydantic import BaseModel, ConfigDict


class StoredCookie(BaseModel):
    """保存されたクッキー."""

    model_config = ConfigDict(frozen=True)

    name: str
    value: str
    domain: str
    path: str = "/"

    @property
    def key(self) -> str:
        return f"{self.name}|{self.domain}|{self.path}"

    def matches_host(self, host: str) -> bool:
        domain = self.domain.lstrip(".").lower()
        host = host.lower()
        return host == domain or host.endswith("." + domain)


class CookieStore:
    """チャレンジ突破後のクッキーを保持し、リクエスト時に送出する"""

    def __init__(self) -> None:
        self._cookies: dict[str, StoredCookie] = {}

    def set_cookie(self, name: str, value: str, domain: str, path: str = "/") -> None:
        """クッキーを追加 (name|domain|path が同じものは上書き)"""
        cookie = StoredCookie(name=name, value=value, domain=domain, path=path)
        self._cookies[cookie.key] = cookie
        logger.debug("Stored cookie {} for {}", name, domain)

    def cookies_for(self, host: str) -> list[StoredCookie]:
        return [c for c in self._cookies.values() if c.matches_host(host)]

    def cookie_header(self, host: str) -> str | None:
        """Cookieヘッダー値を生成"""
        cookies = self.cookies_for(host)
        if not cookies:
            return None
        return "; ".join(f"{c.name}={c.value}" for c in cookies)

    def clear(self, domain: str | None = None) -> None:
        if domain is None:
            self._cookies.clear()
            return
        self._cookies = {
            key: c for key, c in self._cookies.items() if not c.matches_host(domain)
        }

    def __len__(self) -> int:
        return len(self._cookies)
