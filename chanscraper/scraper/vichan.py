"""vichan / Lynxchan系サイト用スクレイパー."""

from __future__ import annotations

from functools import partial
from typing import Any

from loguru import logger

from ..models.data_models import Board, Post, Thread
from .aggregator import fan_out
from .base import BaseScraper
from .decoders import decode_boards, decode_catalog, decode_lynxchan_boards, decode_thread
from .errors import ExhaustedError
from .html_scrapers import scrape_endchan_boards
from .probe import Candidate, CandidateKind, parse_json_payload

CATALOG_PATHS = (
    "{b}/catalog.json",
    "api/{b}/catalog.json",
    "{b}/threads.json",
    "{b}/1.json",
    "{b}/0.json",
    "{b}/catalog?json=1",
    "api/{b}/catalog?json=1",
)

THREAD_PATHS = (
    "{b}/res/{n}.json",
    "api/{b}/thread/{n}.json",
)

BOARD_LIST_PATHS = ("boards.json", "api/boards.json")

# 板一覧が複数ページに分かれる形式 (ページ番号を末尾に付ける)
PAGED_BOARD_LIST_PATHS = ("boards.js?json=1&page=", "boards?json=1&page=")


def decode_board_list(payload: Any) -> list[Board] | None:
    """Lynxchan形式、なければ汎用形式として板一覧をデコード"""
    parsed = decode_lynxchan_boards(payload)
    if parsed is not None:
        return parsed[0]
    return decode_boards(payload)


def unique_boards(boards: list[Board]) -> list[Board]:
    """板コードで重複排除してコード順に並べる"""
    seen: dict[str, Board] = {}
    for board in boards:
        seen.setdefault(board.code, board)
    return sorted(seen.values(), key=lambda b: b.code)


class VichanScraper(BaseScraper):
    """vichan系の汎用JSONエンドポイントを試すスクレイパー"""

    def catalog_candidates(self, board: str) -> list[Candidate[Thread]]:
        return [Candidate(self.url(path.format(b=board)), decode_catalog) for path in CATALOG_PATHS]

    def thread_candidates(self, board: str, thread_no: int) -> list[Candidate[Post]]:
        decode = partial(decode_thread, thread_no=thread_no)
        return [
            Candidate(self.url(path.format(b=board, n=thread_no)), decode)
            for path in THREAD_PATHS
        ]

    def board_candidates(self) -> list[Candidate[Board]]:
        candidates: list[Candidate[Board]] = [
            Candidate(self.url(path), decode_boards) for path in BOARD_LIST_PATHS
        ]
        for prefix in PAGED_BOARD_LIST_PATHS:
            candidates.append(
                Candidate(
                    self.url(f"{prefix}1"),
                    decode_board_list,
                    expand=partial(self.expand_board_pages, prefix),
                )
            )
        return candidates

    async def fetch_boards(self) -> list[Board]:
        """板一覧を取得"""
        return await self.probe(self.board_candidates(), f"{self.site_name} boards")

    async def fetch_catalog(self, board: str) -> list[Thread]:
        """カタログを取得"""
        board = self.normalize_board(board)
        if not board:
            return []
        return await self.probe(
            self.catalog_candidates(board),
            f"/{board}/ catalog",
            self.board_page_url(board),
        )

    async def fetch_thread(self, board: str, thread_no: int) -> list[Post]:
        """スレッドを取得"""
        board = self.normalize_board(board)
        if not board:
            return []
        return await self.probe(
            self.thread_candidates(board, thread_no),
            f"thread /{board}/{thread_no}",
            self.thread_page_url(board, thread_no),
        )

    async def get_board_page(self, prefix: str, page: int) -> list[Board]:
        """ページ分割された板一覧の1ページを取得"""
        url = self.url(f"{prefix}{page}")
        response = await self.fetch(url)
        if not response.ok:
            raise ExhaustedError(f"{self.site_name} boards page {page}", f"HTTP {response.status}")
        parsed = decode_lynxchan_boards(parse_json_payload(response.body))
        if parsed is None:
            raise ExhaustedError(f"{self.site_name} boards page {page}", f"Invalid JSON from {url}")
        return parsed[0]

    async def expand_board_pages(
        self, prefix: str, payload: Any, boards: list[Board]
    ) -> list[Board]:
        """2ページ目以降を並行取得して統合"""
        parsed = decode_lynxchan_boards(payload)
        page_count = parsed[1] if parsed is not None else 1
        if page_count <= 1:
            return boards

        logger.info(f"Fetching {page_count - 1} more board pages from {self.site_name}")
        collector = await fan_out(
            list(range(2, page_count + 1)), partial(self.get_board_page, prefix)
        )
        if collector.errors:
            logger.warning(
                "{} of {} board pages failed on {}",
                len(collector.errors),
                page_count - 1,
                self.site_name,
            )
        return unique_boards(boards + collector.items)


class LynxchanScraper(VichanScraper):
    """Lynxchan系サイト用スクレイパー

    JSONの板一覧が得られない場合は ``boards.js`` のHTMLを解析する。
    """

    def board_candidates(self) -> list[Candidate[Board]]:
        candidates = super().board_candidates()
        candidates.append(
            Candidate(self.url("boards.js"), scrape_endchan_boards, kind=CandidateKind.HTML)
        )
        return candidates
