"""4chan用スクレイパー."""

from __future__ import annotations

from functools import partial

from loguru import logger

from ..models.data_models import Board, Post, SiteDescriptor, Thread
from ..utils.config import Config
from ..utils.cookies import CookieStore
from ..utils.text import as_int
from .aggregator import fan_out
from .base import BaseScraper
from .decoders import decode_boards, decode_catalog, decode_thread, flat_thread
from .errors import ExhaustedError, NotFoundError
from .probe import Candidate, parse_json_payload

API_BASE = "https://a.4cdn.org/"


class FourChanScraper(BaseScraper):
    """4chan用スクレイパー"""

    def __init__(
        self,
        site: SiteDescriptor,
        cookies: CookieStore | None = None,
        settings: Config | None = None,
    ) -> None:
        super().__init__(site, cookies, settings)
        self.api_base = API_BASE

    def thread_page_url(self, board: str, thread_no: int) -> str:
        return self.url(f"{board}/thread/{thread_no}")

    async def fetch_boards(self) -> list[Board]:
        """板一覧を取得"""
        candidates = [Candidate(f"{self.api_base}boards.json", decode_boards)]
        return await self.probe(candidates, "boards")

    async def fetch_catalog(self, board: str) -> list[Thread]:
        """カタログを取得"""
        board = self.normalize_board(board)
        if not board:
            return []
        candidates = [Candidate(f"{self.api_base}{board}/catalog.json", decode_catalog)]
        return await self.probe(
            candidates, f"/{board}/ catalog", self.board_page_url(board)
        )

    async def fetch_thread(self, board: str, thread_no: int) -> list[Post]:
        """スレッドを取得"""
        board = self.normalize_board(board)
        if not board:
            return []
        candidates = [
            Candidate(
                f"{self.api_base}{board}/thread/{thread_no}.json",
                partial(decode_thread, thread_no=thread_no),
            )
        ]
        return await self.probe(
            candidates,
            f"thread /{board}/{thread_no}",
            self.thread_page_url(board, thread_no),
        )

    async def get_archived_ids(self, board: str) -> list[int]:
        """アーカイブ済みスレッドのIDリストを取得"""
        url = f"{self.api_base}{board}/archive.json"
        response = await self.fetch(url)
        if response.status == 404:
            raise NotFoundError(f"/{board}/ archive")
        if not response.ok:
            raise ExhaustedError(f"/{board}/ archive", f"HTTP {response.status} for {url}")

        payload = parse_json_payload(response.body)
        if not isinstance(payload, list):
            logger.error("Unexpected data type for archive: {}", type(payload))
            raise ExhaustedError(f"/{board}/ archive", f"Invalid JSON from {url}")
        ids = [as_int(item) for item in payload]
        return [i for i in ids if i is not None]

    async def get_archived_op(self, board: str, thread_no: int) -> list[Thread]:
        """アーカイブ済みスレッドのOPを取得"""
        url = f"{self.api_base}{board}/thread/{thread_no}.json"
        response = await self.fetch(url)
        if not response.ok:
            raise ExhaustedError(f"thread /{board}/{thread_no}", f"HTTP {response.status}")

        payload = parse_json_payload(response.body)
        posts = payload.get("posts") if isinstance(payload, dict) else None
        if not isinstance(posts, list) or not posts or not isinstance(posts[0], dict):
            return []
        op = flat_thread(posts[0])
        return [op] if op is not None else []

    async def fetch_archived_threads(self, board: str, limit: int | None = None) -> list[Thread]:
        """アーカイブ済みスレッドのOPを並行取得し、新しい順に返す"""
        board = self.normalize_board(board)
        if not board:
            return []
        if limit is None:
            limit = self.settings.get_limit("archive_limit", 50)

        thread_ids = (await self.get_archived_ids(board))[:limit]
        logger.info(f"Fetching {len(thread_ids)} archived threads from /{board}/")

        collector = await fan_out(thread_ids, partial(self.get_archived_op, board))
        if not collector.items and collector.last_error is not None:
            raise ExhaustedError(f"/{board}/ archive", str(collector.last_error))

        return sorted(collector.items, key=lambda t: t.timestamp or 0, reverse=True)
