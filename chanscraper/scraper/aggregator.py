"""複数ページの取得結果を統合するユーティリティ."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Hashable, Iterable, Sequence
from typing import Generic, TypeVar

from loguru import logger

from ..models.data_models import Board, Thread
from .errors import ChanScraperError

T = TypeVar("T")
I = TypeVar("I")


def merge_thread(existing: Thread, incoming: Thread) -> Thread:
    """同じスレッド番号の重複を統合 (既存の空でない値を優先)"""
    return existing.model_copy(
        update={
            "subject": existing.subject or incoming.subject,
            "body": existing.body or incoming.body,
            "media_refs": existing.media_refs or incoming.media_refs,
            "reply_count": (
                existing.reply_count
                if existing.reply_count is not None
                else incoming.reply_count
            ),
            "image_count": (
                existing.image_count
                if existing.image_count is not None
                else incoming.image_count
            ),
            "timestamp": (
                existing.timestamp if existing.timestamp is not None else incoming.timestamp
            ),
        }
    )


def merge_board(existing: Board, incoming: Board) -> Board:
    """同じ板コードの重複を統合 (既存の空でない値を優先)"""
    title = existing.title
    if not title or title == existing.code:
        title = incoming.title or title
    return existing.model_copy(
        update={
            "title": title,
            "description": existing.description or incoming.description,
            "active_users": (
                existing.active_users
                if existing.active_users is not None
                else incoming.active_users
            ),
            "thread_count": (
                existing.thread_count
                if existing.thread_count is not None
                else incoming.thread_count
            ),
        }
    )


def thread_key(thread: Thread) -> int:
    return thread.no


def board_key(board: Board) -> str:
    return board.code


class KeyedMerger(Generic[T]):
    """キーで重複排除しつつ初出順を保つマージ"""

    def __init__(self, key: Callable[[T], Hashable], merge: Callable[[T, T], T]) -> None:
        self._key = key
        self._merge = merge
        self._items: dict[Hashable, T] = {}

    def add(self, items: Iterable[T]) -> None:
        for item in items:
            key = self._key(item)
            existing = self._items.get(key)
            # dictは挿入順を保持し、値の更新では順序が変わらない
            self._items[key] = item if existing is None else self._merge(existing, item)

    @property
    def items(self) -> list[T]:
        return list(self._items.values())

    def __len__(self) -> int:
        return len(self._items)


def merge_threads(*pages: Iterable[Thread]) -> list[Thread]:
    merger: KeyedMerger[Thread] = KeyedMerger(thread_key, merge_thread)
    for page in pages:
        merger.add(page)
    return merger.items


async def aggregate_pages(
    initial: Sequence[T],
    fetch_page: Callable[[int], Awaitable[Sequence[T]]],
    last_page: int,
    key: Callable[[T], Hashable],
    merge: Callable[[T, T], T],
    first_page: int = 2,
) -> list[T]:
    """2ページ目以降を順番に取得して統合

    個別ページの失敗は無視し、そのページの寄与が欠けるだけとする。
    """
    merger: KeyedMerger[T] = KeyedMerger(key, merge)
    merger.add(initial)
    for page in range(first_page, last_page + 1):
        try:
            items = await fetch_page(page)
        except ChanScraperError as e:
            logger.warning("Skipping page {}: {}", page, e)
            continue
        logger.debug("Page {} contributed {} items", page, len(items))
        merger.add(items)
    return merger.items


async def aggregate_offsets(
    fetch_offset: Callable[[int], Awaitable[tuple[Sequence[T], int | None]]],
    key: Callable[[T], Hashable],
    merge: Callable[[T, T], T],
    max_pages: int,
) -> list[T]:
    """サーバーが返す次のオフセットを辿って統合

    最初のページの失敗はそのまま送出する。以降の失敗はそこで打ち切る。
    """
    merger: KeyedMerger[T] = KeyedMerger(key, merge)
    items, next_offset = await fetch_offset(0)
    merger.add(items)

    pages = 1
    while next_offset is not None and pages < max_pages:
        try:
            items, next_offset = await fetch_offset(next_offset)
        except ChanScraperError as e:
            logger.warning("Stopping pagination at offset {}: {}", next_offset, e)
            break
        merger.add(items)
        pages += 1

    if next_offset is not None:
        logger.warning("Pagination ceiling of {} pages reached", max_pages)
    return merger.items


class ParallelCollector(Generic[T]):
    """並行タスクの結果をロックで保護して集める"""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self.items: list[T] = []
        self.errors: list[BaseException] = []

    async def add(self, items: Iterable[T]) -> None:
        async with self._lock:
            self.items.extend(items)

    async def record_error(self, error: BaseException) -> None:
        async with self._lock:
            self.errors.append(error)

    @property
    def last_error(self) -> BaseException | None:
        return self.errors[-1] if self.errors else None


async def fan_out(
    inputs: Sequence[I],
    worker: Callable[[I], Awaitable[Iterable[T]]],
) -> ParallelCollector[T]:
    """入力ごとにタスクを並行実行し、結果を共有のコレクターに集める

    完了順は保証されないため、呼び出し側でキーによる統合や並べ替えを行う。
    """
    collector: ParallelCollector[T] = ParallelCollector()

    async def run(item: I) -> None:
        try:
            results = await worker(item)
        except ChanScraperError as e:
            logger.debug("Parallel task for {} failed: {}", item, e)
            await collector.record_error(e)
            return
        await collector.add(results)

    # 並行実行用のタスクを作成
    tasks = [run(item) for item in inputs]
    results = await asyncio.gather(*tasks, return_exceptions=True)
    for item, result in zip(inputs, results):
        if isinstance(result, Exception):
            logger.error("Exception in parallel task for {}: {}", item, result)
            await collector.record_error(result)
    return collector
