"""8kun用スクレイパー."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from types import TracebackType

from loguru import logger

from ..models.data_models import Board, SiteDescriptor
from ..utils.config import Config
from ..utils.cookies import CookieStore
from ..utils.text import decode_html_bytes
from .aggregator import aggregate_offsets, board_key, merge_board
from .decoders import decode_kun_board_search
from .errors import ChanScraperError, ExhaustedError
from .html_scrapers import scrape_kun_index_boards
from .probe import ACCEPT_HTML, parse_json_payload
from .vichan import VichanScraper

BOARD_SEARCH_URL = "https://sys.8kun.top/board-search.php?page={offset}&sfw=0"

BoardsCallback = Callable[[list[Board]], None]


def merge_kun_boards(index: list[Board], api: list[Board]) -> list[Board]:
    """インデックスの板一覧にAPIの板一覧を統合

    インデックス側のタイトルは空かコードと同じ場合のみ置き換える。
    APIにしかない板はコード順に末尾へ追加する。
    """
    api_by_code = {board.code: board for board in api}
    merged: list[Board] = []
    for board in index:
        extra = api_by_code.get(board.code)
        if extra is None:
            merged.append(board)
            continue
        title = board.title
        if not title.strip() or title == board.code:
            title = extra.title
        merged.append(
            board.model_copy(
                update={
                    "title": title,
                    "description": board.description or extra.description,
                }
            )
        )

    index_codes = {board.code for board in index}
    merged.extend(
        sorted((b for b in api if b.code not in index_codes), key=lambda b: b.code)
    )
    return merged


class EightKunScraper(VichanScraper):
    """8kun用スクレイパー"""

    def __init__(
        self,
        site: SiteDescriptor,
        cookies: CookieStore | None = None,
        settings: Config | None = None,
    ) -> None:
        super().__init__(site, cookies, settings)
        self._background: set[asyncio.Task[None]] = set()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.wait_for_updates()
        await super().__aexit__(exc_type, exc_val, exc_tb)

    async def fetch_boards(self, on_update: BoardsCallback | None = None) -> list[Board]:
        """板一覧を取得 (board-search → index.html → 汎用候補)

        index.html の結果が少ない場合はそのまま返し、API側の一覧で補完した
        結果を後から ``on_update`` に渡す。
        """
        try:
            boards = await self.fetch_board_search()
        except ChanScraperError as e:
            logger.warning(f"8kun board-search failed: {e}")
        else:
            if boards:
                return boards

        try:
            index = await self.fetch_index_boards()
        except ChanScraperError as e:
            logger.warning(f"8kun index.html failed: {e}")
            return await super().fetch_boards()

        minimum = self.settings.get_limit("kun_index_minimum_boards", 200)
        if len(index) < minimum and on_update is not None:
            logger.info(
                "8kun index listed only {} boards; enriching in background", len(index)
            )
            task = asyncio.create_task(self._enrich(index, on_update))
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        return index

    async def get_board_search_page(self, offset: int) -> tuple[list[Board], int | None]:
        url = BOARD_SEARCH_URL.format(offset=offset)
        response = await self.fetch(url)
        if not response.ok:
            raise ExhaustedError("8kun board-search", f"HTTP {response.status} for {url}")
        parsed = decode_kun_board_search(parse_json_payload(response.body))
        if parsed is None:
            raise ExhaustedError("8kun board-search", f"Invalid JSON from {url}")
        return parsed

    async def fetch_board_search(self) -> list[Board]:
        """board-search.php をオフセットで辿って全件取得"""
        max_pages = self.settings.get_limit("kun_board_search_max_pages", 50)
        boards = await aggregate_offsets(
            self.get_board_search_page, board_key, merge_board, max_pages
        )
        logger.info(f"Loaded {len(boards)} boards from 8kun board-search")
        return boards

    async def fetch_index_boards(self) -> list[Board]:
        """index.html の板テーブルを解析"""
        url = self.url("index.html")
        response = await self.fetch(url, ACCEPT_HTML)
        if not response.ok:
            raise ExhaustedError("8kun index", f"HTTP {response.status} for {url}")
        boards = scrape_kun_index_boards(decode_html_bytes(response.body))
        if not boards:
            raise ExhaustedError("8kun index", f"No board table in {url}")
        return boards

    async def _enrich(self, index: list[Board], on_update: BoardsCallback) -> None:
        try:
            api = await super().fetch_boards()
        except ChanScraperError as e:
            logger.warning(f"8kun board enrichment failed: {e}")
            return
        merged = merge_kun_boards(index, api)
        logger.info(f"8kun board list enriched to {len(merged)} boards")
        on_update(merged)

    @property
    def has_pending_updates(self) -> bool:
        return any(not task.done() for task in self._background)

    async def wait_for_updates(self) -> None:
        """バックグラウンドの補完処理の完了を待つ"""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def cancel_updates(self) -> None:
        """バックグラウンドの補完処理を中止"""
        for task in list(self._background):
            task.cancel()
