"""スクレイパーの基底クラス."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from types import TracebackType
from typing import TypeVar
from urllib.parse import urlsplit

import aiohttp
from loguru import logger

from ..models.data_models import Board, FetchResponse, Post, SiteDescriptor, Thread
from ..utils.config import Config, config
from ..utils.cookies import CookieStore
from ..utils.text import normalize_board_code
from .errors import NetworkError
from .probe import ACCEPT_JSON, Candidate, EndpointProber

T = TypeVar("T")


class BaseScraper(ABC):
    """スクレイパーの基底クラス"""

    def __init__(
        self,
        site: SiteDescriptor,
        cookies: CookieStore | None = None,
        settings: Config | None = None,
    ) -> None:
        self.site = site
        self.site_name = site.id
        self.base_url = site.base_url
        self.cookies = cookies if cookies is not None else CookieStore()
        self.settings = settings if settings is not None else config
        self.session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> BaseScraper:
        """非同期コンテキストマネージャーの開始"""
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.settings.timeout),
            headers={
                "User-Agent": self.settings.user_agent,
                "Accept-Language": self.settings.accept_language,
            },
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """非同期コンテキストマネージャーの終了"""
        if self.session:
            await self.session.close()
            self.session = None

    def request_headers(self, url: str, accept: str) -> dict[str, str]:
        """リクエストヘッダー (保存済みクッキーを含む)"""
        headers = {"Accept": accept}
        host = urlsplit(url).hostname
        if host:
            cookie = self.cookies.cookie_header(host)
            if cookie:
                headers["Cookie"] = cookie
        return headers

    async def fetch(self, url: str, accept: str = ACCEPT_JSON) -> FetchResponse:
        """URLを取得してステータスと本文を返す"""
        if self.session is None:
            logger.error("Session is not initialized")
            raise NetworkError(url, "session is not initialized")

        try:
            async with self.session.get(
                url, headers=self.request_headers(url, accept)
            ) as response:
                body = await response.read()
                if response.status != 200:
                    logger.debug("HTTP {} for {}", response.status, url)
                return FetchResponse(url=url, status=response.status, body=body)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Error fetching {url}: {e}")
            raise NetworkError(url, str(e) or type(e).__name__) from e

    def url(self, path: str) -> str:
        return f"{self.base_url}{path.lstrip('/')}"

    def board_page_url(self, board: str) -> str:
        """板の正規ページURL"""
        return self.url(f"{board}/")

    def thread_page_url(self, board: str, thread_no: int) -> str:
        """スレッドの正規ページURL"""
        return self.url(f"{board}/res/{thread_no}.html")

    async def probe(
        self,
        candidates: list[Candidate[T]],
        what: str,
        remediation_url: str | None = None,
        is_useful: Callable[[list[T]], bool] | None = None,
    ) -> list[T]:
        """候補エンドポイントを順に試す"""
        prober: EndpointProber[T] = EndpointProber(
            self.fetch, what, remediation_url or self.base_url, is_useful
        )
        return await prober.run(candidates)

    @abstractmethod
    async def fetch_boards(self) -> list[Board]:
        """板一覧を取得（サブクラスで実装）"""
        pass

    @abstractmethod
    async def fetch_catalog(self, board: str) -> list[Thread]:
        """カタログを取得（サブクラスで実装）"""
        pass

    @abstractmethod
    async def fetch_thread(self, board: str, thread_no: int) -> list[Post]:
        """スレッドの投稿一覧を取得（サブクラスで実装）"""
        pass

    @staticmethod
    def normalize_board(board: str) -> str:
        return normalize_board_code(board)
