"""スクレイパーマネージャー - サイトごとのスクレイパーの生成と横断処理を管理."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import AsyncExitStack
from functools import partial
from typing import TypeVar

from loguru import logger

from ..models.data_models import (
    Board,
    EngineKind,
    FetchResponse,
    MediaURLs,
    Post,
    SearchHit,
    SiteDescriptor,
    Thread,
)
from ..utils.config import Config, config
from ..utils.cookies import CookieStore
from ..utils.text import clean_html
from .aggregator import fan_out, merge_threads
from .base import BaseScraper
from .directory import SiteDirectory
from .eightkun import BoardsCallback, EightKunScraper
from .errors import ChallengeBlockedError, ExhaustedError
from .fourchan import FourChanScraper
from .media import fetch_media, resolve_item
from .replies import build_reply_index
from .sevenchan import SevenChanScraper
from .vichan import LynxchanScraper, VichanScraper

T = TypeVar("T")

ScraperFactory = Callable[[SiteDescriptor, CookieStore, Config], BaseScraper]


class ScraperManager:
    """スクレイパーマネージャー"""

    def __init__(
        self,
        directory: SiteDirectory | None = None,
        cookies: CookieStore | None = None,
        settings: Config | None = None,
    ) -> None:
        self.settings = settings if settings is not None else config
        self.directory = (
            directory
            if directory is not None
            else SiteDirectory(self.settings.get("defaults.site"))
        )
        self.cookies = cookies if cookies is not None else CookieStore()
        self.scrapers: dict[EngineKind, ScraperFactory] = {
            EngineKind.FOURCHAN: FourChanScraper,
            EngineKind.VICHAN: VichanScraper,
            EngineKind.LYNXCHAN: LynxchanScraper,
            EngineKind.SEVENCHAN: SevenChanScraper,
            EngineKind.EIGHTKUN: EightKunScraper,
        }
        self._pending: dict[asyncio.Task[None], EightKunScraper] = {}

    def get_available_sites(self) -> list[str]:
        """利用可能なサイト一覧を取得"""
        return [site.id for site in self.directory.all]

    def create_scraper(self, site_id: str | None = None) -> BaseScraper:
        """サイトに対応するスクレイパーを生成 (未知のサイトはKeyError)"""
        site = self.directory.require(site_id) if site_id else self.directory.current
        scraper_factory = self.scrapers[site.engine_kind]
        return scraper_factory(site, self.cookies, self.settings)

    async def fetch_boards(
        self, site_id: str | None = None, on_update: BoardsCallback | None = None
    ) -> list[Board]:
        """板一覧を取得

        ``on_update`` は後から補完された板一覧を受け取る (対応サイトのみ)。
        """
        scraper = self.create_scraper(site_id)
        if not isinstance(scraper, EightKunScraper):
            async with scraper:
                return await scraper.fetch_boards()

        async with AsyncExitStack() as stack:
            await stack.enter_async_context(scraper)
            boards = await scraper.fetch_boards(on_update=on_update)
            if scraper.has_pending_updates:
                # 補完が終わるまでセッションを閉じない
                task = asyncio.create_task(self._close_after_updates(scraper, stack.pop_all()))
                self._pending[task] = scraper
                task.add_done_callback(self._pending.pop)
        return boards

    async def _close_after_updates(self, scraper: EightKunScraper, stack: AsyncExitStack) -> None:
        async with stack:
            await scraper.wait_for_updates()

    async def wait_for_updates(self) -> None:
        """バックグラウンドで続いている板一覧の補完を待つ"""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def cancel_updates(self) -> None:
        """バックグラウンドの補完を中止 (セッションは閉じられる)"""
        for scraper in list(self._pending.values()):
            scraper.cancel_updates()

    async def fetch_catalog(self, site_id: str | None, board: str) -> list[Thread]:
        """カタログを取得"""
        async with self.create_scraper(site_id) as scraper:
            return await scraper.fetch_catalog(board)

    async def fetch_thread(self, site_id: str | None, board: str, thread_no: int) -> list[Post]:
        """スレッドの投稿一覧を取得"""
        async with self.create_scraper(site_id) as scraper:
            return await scraper.fetch_thread(board, thread_no)

    async def fetch_archived_threads(
        self, site_id: str | None, board: str, limit: int | None = None
    ) -> list[Thread]:
        """アーカイブ済みスレッドを取得 (4chanのみ)"""
        async with self.create_scraper(site_id) as scraper:
            if not isinstance(scraper, FourChanScraper):
                logger.warning("Archived threads are not available on {}", scraper.site_name)
                return []
            return await scraper.fetch_archived_threads(board, limit)

    def resolve_media_urls(
        self,
        site_id: str | None,
        board: str,
        item: Thread | Post,
        prefer_spoiler: bool = False,
    ) -> MediaURLs:
        """スレッド・投稿の先頭メディアのURLを解決"""
        site = self.directory.require(site_id) if site_id else self.directory.current
        return resolve_item(
            site,
            BaseScraper.normalize_board(board),
            item,
            prefer_spoiler,
            self.settings.mirror_hosts,
        )

    async def fetch_media(
        self, site_id: str | None, urls: MediaURLs, thumbnail: bool = False
    ) -> FetchResponse:
        """メディアを取得 (ミラー候補を順に試す)"""
        candidates = urls.thumb_candidates if thumbnail else urls.full_candidates
        if not candidates:
            primary = urls.thumb_url if thumbnail else urls.full_url
            candidates = [primary] if primary else []
        async with self.create_scraper(site_id) as scraper:
            return await fetch_media(scraper.fetch, candidates)

    @staticmethod
    def build_reply_index(posts: list[Post]) -> dict[int, list[int]]:
        """投稿番号ごとの被引用一覧を作成"""
        return build_reply_index(posts)

    async def _search_board(
        self,
        scraper: BaseScraper,
        query: str,
        include_archived: bool,
        board: str,
    ) -> list[SearchHit]:
        threads = await scraper.fetch_catalog(board)
        if include_archived and isinstance(scraper, FourChanScraper):
            threads = merge_threads(threads, await scraper.fetch_archived_threads(board))

        snippet_length = self.settings.get_limit("search_snippet_length", 160)
        needle = query.lower()
        hits: list[SearchHit] = []
        for thread in threads:
            subject = clean_html(thread.subject)
            body = clean_html(thread.body)
            if needle not in subject.lower() and needle not in body.lower():
                continue
            hits.append(
                SearchHit(
                    board=board,
                    thread_no=thread.no,
                    subject=subject or None,
                    snippet=body[:snippet_length],
                )
            )
        return hits

    async def search(
        self,
        site_id: str | None,
        boards: list[str],
        query: str,
        include_archived: bool = False,
    ) -> list[SearchHit]:
        """複数の板を並行検索

        結果は板コード昇順、スレッド番号降順に並べる。
        """
        query = query.strip()
        codes = [c for c in (BaseScraper.normalize_board(b) for b in boards) if c]
        if not query or not codes:
            return []

        logger.info(f"Searching {len(codes)} boards for {query!r}")
        async with self.create_scraper(site_id) as scraper:
            collector = await fan_out(
                codes, partial(self._search_board, scraper, query, include_archived)
            )

        if not collector.items and len(collector.errors) == len(codes):
            raise ExhaustedError("search", str(collector.last_error))

        hits = sorted(collector.items, key=lambda h: (h.board, -h.thread_no))
        logger.info(
            "Search completed. Hits: {}, Failed boards: {}", len(hits), len(collector.errors)
        )
        return hits

    async def run_with_remediation(
        self,
        call: Callable[[], Awaitable[T]],
        on_challenge: Callable[[str], Awaitable[bool]],
    ) -> T:
        """チャレンジページで失敗した場合、解除後に一度だけ再試行"""
        try:
            return await call()
        except ChallengeBlockedError as e:
            logger.warning("Challenge blocked; remediation required at {}", e.remediation_url)
            cleared = await on_challenge(e.remediation_url)
            if not cleared:
                raise
            logger.info("Challenge cleared; retrying once")
            return await call()
