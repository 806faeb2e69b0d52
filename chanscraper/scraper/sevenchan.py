"""7chan用スクレイパー.

JSONエンドポイントが空の結果しか返さないことが多いため、中身の有無を判定して
HTML (``catalog.html``、板インデックス) の解析へ切り替える。
"""

from __future__ import annotations

from functools import partial
from typing import Any

from loguru import logger

from ..models.data_models import Board, Post, Thread
from ..utils.text import decode_html_bytes
from .aggregator import aggregate_pages, fan_out, merge_thread, thread_key
from .errors import ExhaustedError
from .html_scrapers import (
    find_max_index_page,
    is_challenge_page,
    scrape_board_page_title,
    scrape_catalog_html,
    scrape_thread_html,
)
from .probe import ACCEPT_HTML, Candidate, CandidateKind
from .vichan import VichanScraper

BOARD_CODES = (
    "i", "b", "fl", "gfx", "?", "a", "grim", "hi", "me", "rx", "vg", "weed", "wp", "x",
    "aisfw", "co", "diy", "eh", "fit", "halp", "jew", "lit", "phi", "pr", "rnb", "sci",
    "tg", "w",
    "ai", "cake", "cd", "d", "di", "elit", "fur", "gif", "h", "men", "pco", "s", "sh",
    "ss", "unf",
)


def static_boards() -> list[Board]:
    """既知の板一覧 (タイトルは /code/)"""
    return [Board(code=code, title=f"/{code}/") for code in BOARD_CODES]


def has_useful_content(items: list[Thread] | list[Post]) -> bool:
    """件名・本文・添付のいずれかを持つ項目があるか"""
    for item in items:
        if (item.subject or "").strip() or (item.body or "").strip():
            return True
        if item.media_refs:
            return True
    return False


class SevenChanScraper(VichanScraper):
    """7chan用スクレイパー"""

    async def fetch_boards(self, enrich_titles: bool = True) -> list[Board]:
        """板一覧を取得 (静的リスト、必要なら板ページからタイトルを補完)"""
        boards = static_boards()
        if not enrich_titles:
            return boards
        return await self.enrich_board_titles(boards)

    async def get_board_title(self, board: Board) -> list[tuple[str, str]]:
        response = await self.fetch(self.board_page_url(board.code), ACCEPT_HTML)
        if not response.ok:
            return []
        title = scrape_board_page_title(decode_html_bytes(response.body), board.code)
        return [(board.code, title)] if title else []

    async def enrich_board_titles(self, boards: list[Board]) -> list[Board]:
        """各板ページの <title> から並行してタイトルを取得"""
        collector = await fan_out(boards, self.get_board_title)
        titles = dict(collector.items)
        logger.info(f"Enriched {len(titles)} of {len(boards)} 7chan board titles")
        return [
            board.model_copy(update={"title": titles[board.code]})
            if board.code in titles and board.title.startswith("/")
            else board
            for board in boards
        ]

    async def fetch_catalog(self, board: str) -> list[Thread]:
        """カタログを取得 (JSON → catalog.html → 板インデックス)"""
        board = self.normalize_board(board)
        if not board:
            return []

        scrape = partial(scrape_catalog_html, board=board)
        candidates = self.catalog_candidates(board) + [
            Candidate(self.url(f"{board}/catalog.html"), scrape, kind=CandidateKind.HTML),
            Candidate(
                self.board_page_url(board),
                scrape,
                kind=CandidateKind.HTML,
                expand=partial(self.expand_index_pages, board),
            ),
        ]
        return await self.probe(
            candidates, f"/{board}/ catalog", self.board_page_url(board), has_useful_content
        )

    async def get_index_page(self, board: str, page: int) -> list[Thread]:
        """板インデックスの指定ページを取得"""
        url = self.url(f"{board}/{page}.html")
        response = await self.fetch(url, ACCEPT_HTML)
        if not response.ok:
            raise ExhaustedError(f"/{board}/ index page {page}", f"HTTP {response.status}")
        html = decode_html_bytes(response.body)
        if is_challenge_page(html):
            logger.warning("Challenge page served for {}; skipping", url)
            return []
        return scrape_catalog_html(html, board)

    async def expand_index_pages(
        self, board: str, html: Any, threads: list[Thread]
    ) -> list[Thread]:
        """インデックスの2ページ目以降を順に取得して統合"""
        cap = self.settings.get_limit("sevenchan_max_index_pages", 15)
        last_page = find_max_index_page(html, board, cap)
        if last_page <= 1:
            return threads
        merged = await aggregate_pages(
            threads, partial(self.get_index_page, board), last_page, thread_key, merge_thread
        )
        logger.info(f"Aggregated {len(merged)} threads from {last_page} index pages of /{board}/")
        return merged

    async def fetch_thread(self, board: str, thread_no: int) -> list[Post]:
        """スレッドを取得 (JSON → res/{n}.html)"""
        board = self.normalize_board(board)
        if not board:
            return []

        candidates = self.thread_candidates(board, thread_no) + [
            Candidate(
                self.thread_page_url(board, thread_no),
                partial(scrape_thread_html, board=board, thread_no=thread_no),
                kind=CandidateKind.HTML,
            )
        ]
        return await self.probe(
            candidates,
            f"thread /{board}/{thread_no}",
            self.thread_page_url(board, thread_no),
            has_useful_content,
        )
