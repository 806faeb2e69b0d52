#!/usr/bin/env python3
"""Chan Scraper - TyperベースのCLIエントリーポイント."""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Annotated, TypeVar
from urllib.parse import urlsplit

import typer
from loguru import logger

from chanscraper.models.data_models import FetchResult, MediaURLs, Post, ResultKind, Thread
from chanscraper.scraper.errors import (
    ChallengeBlockedError,
    ChanScraperError,
    ExhaustedError,
    NotFoundError,
)
from chanscraper.scraper.manager import ScraperManager
from chanscraper.utils.config import Config, config
from chanscraper.utils.cookies import CookieStore
from chanscraper.utils.export import DataExporter

T = TypeVar("T")

app = typer.Typer(add_completion=False, help="画像掲示板の板・カタログ・スレッドを取得するCLIツール")

EXIT_BAD_ARGUMENTS = 1
EXIT_NOT_FOUND = 2
EXIT_CHALLENGE_BLOCKED = 3
EXIT_EXHAUSTED = 4


class OutputFormat(str, Enum):
    """出力フォーマットの選択肢."""

    JSON = "json"
    CSV = "csv"
    BOTH = "both"


SiteOption = Annotated[
    str | None,
    typer.Option("--site", "-s", help="対象サイト (例: 4chan, 8kun, 7chan)"),
]
BoardsOption = Annotated[
    list[str] | None,
    typer.Option("--board", "-b", help="対象の板コード (複数指定可)"),
]
ThreadOption = Annotated[
    int | None,
    typer.Option("--thread", "-t", help="取得するスレッド番号"),
]
SearchOption = Annotated[
    str | None,
    typer.Option("--search", "-q", help="指定した板を横断検索するキーワード"),
]
ArchivedFlag = Annotated[
    bool,
    typer.Option(
        "--archived",
        help="アーカイブ済みスレッドを対象にする (4chanのみ)",
        is_flag=True,
    ),
]
ListSitesFlag = Annotated[
    bool,
    typer.Option(
        "--list-sites",
        help="利用可能なサイト一覧を表示",
        is_flag=True,
    ),
]
ListBoardsFlag = Annotated[
    bool,
    typer.Option(
        "--list-boards",
        help="サイトの板一覧を取得",
        is_flag=True,
    ),
]
OutputPathOption = Annotated[
    Path | None,
    typer.Option("--output", "-o", help="出力ファイルパス"),
]
OutputFormatOption = Annotated[
    OutputFormat | None,
    typer.Option(
        "--format",
        "-f",
        help="出力フォーマット",
        case_sensitive=False,
    ),
]
CookieOption = Annotated[
    list[str] | None,
    typer.Option("--cookie", help="送信するクッキー name=value (複数指定可)"),
]
ConfigPathOption = Annotated[
    Path | None,
    typer.Option("--config-path", help="設定ファイルのパス"),
]
VerboseFlag = Annotated[
    bool,
    typer.Option(
        "--verbose",
        "-v",
        help="詳細ログを出力",
        is_flag=True,
    ),
]


def setup_logging(verbose: bool) -> None:
    """ログ設定を初期化."""
    if verbose:
        logger.remove()
        logger.add(sys.stderr, level="DEBUG")
        return

    log_config = config.get_logging_config()
    logger.remove()
    logger.add(
        sys.stderr,
        level=log_config.get("level", "INFO"),
        format=log_config.get("format", "{time} | {level} | {message}"),
    )

    log_file = Path(log_config.get("file", "logs/chanscraper.log"))
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logger.add(
        log_file,
        level=log_config.get("level", "INFO"),
        format=log_config.get("format", "{time} | {level} | {message}"),
        rotation=log_config.get("rotation", "1 day"),
        retention=log_config.get("retention", "7 days"),
        encoding="utf-8",
    )


def exit_code_for(error: BaseException) -> int:
    """例外の種類から終了コードを決める"""
    if isinstance(error, NotFoundError):
        return EXIT_NOT_FOUND
    if isinstance(error, ChallengeBlockedError):
        return EXIT_CHALLENGE_BLOCKED
    if isinstance(error, ExhaustedError):
        return EXIT_EXHAUSTED
    if isinstance(error, KeyError):
        return EXIT_BAD_ARGUMENTS
    return EXIT_EXHAUSTED


def parse_cookie(raw: str) -> tuple[str, str]:
    """``name=value`` 形式のクッキー指定を分解"""
    name, sep, value = raw.partition("=")
    name = name.strip()
    if not sep or not name:
        raise typer.BadParameter(f"クッキーは name=value 形式で指定してください: {raw}")
    return name, value.strip()


def cookie_domain(base_url: str) -> str:
    host = urlsplit(base_url).hostname or ""
    return host.removeprefix("www.")


async def prompt_for_clearance(manager: ScraperManager, domain: str, url: str) -> bool:
    """チャレンジ解除後のクッキーを対話的に受け取る"""
    typer.secho("アンチボットのチャレンジページに阻まれました。", fg="yellow", err=True)
    typer.echo(f"ブラウザで次のURLを開いてチャレンジを解除してください: {url}", err=True)
    if not sys.stdin.isatty():
        return False

    raw = typer.prompt("取得したクッキー (name=value、空欄で中止)", default="", show_default=False)
    if not raw.strip():
        return False
    name, value = parse_cookie(raw)
    manager.cookies.set_cookie(name, value, domain)
    return True


@app.command()
def main(
    site: SiteOption = None,
    boards: BoardsOption = None,
    thread: ThreadOption = None,
    search: SearchOption = None,
    archived: ArchivedFlag = False,
    list_sites: ListSitesFlag = False,
    list_boards: ListBoardsFlag = False,
    output: OutputPathOption = None,
    output_format: OutputFormatOption = None,
    cookie: CookieOption = None,
    config_path: ConfigPathOption = None,
    verbose: VerboseFlag = False,
) -> None:
    """Chan Scraperのメインコマンド."""
    selected_boards = list(boards or [])

    if config_path is not None:
        global config
        config = Config(config_path)

    setup_logging(verbose)

    manager = ScraperManager(cookies=CookieStore(), settings=config)

    if list_sites:
        typer.echo("利用可能なサイト:")
        current = manager.directory.current
        for descriptor in manager.directory.all:
            marker = " (既定)" if descriptor == current else ""
            typer.echo(
                f"  - {descriptor.id}: {descriptor.display_name} "
                f"[{descriptor.engine_kind.value}] {descriptor.base_url}{marker}"
            )
        raise typer.Exit()

    defaults = config.get_defaults()
    site_id = site or str(defaults.get("site", "4chan"))
    try:
        descriptor = manager.directory.switch_to(site_id)
    except KeyError as exc:
        typer.echo(f"エラー: 不明なサイトです: {site_id}", err=True)
        typer.echo("--list-sites で利用可能なサイトを確認してください。", err=True)
        raise typer.Exit(code=EXIT_BAD_ARGUMENTS) from exc

    for raw in cookie or []:
        name, value = parse_cookie(raw)
        manager.cookies.set_cookie(name, value, cookie_domain(descriptor.base_url))

    if not list_boards and not selected_boards:
        typer.echo("エラー: 対象の板が指定されていません。", err=True)
        typer.echo(
            "--board オプションで板を指定するか、--list-boards で板一覧を確認してください。",
            err=True,
        )
        raise typer.Exit(code=EXIT_BAD_ARGUMENTS)
    if thread is not None and len(selected_boards) != 1:
        typer.echo("エラー: --thread には板を1つだけ指定してください。", err=True)
        raise typer.Exit(code=EXIT_BAD_ARGUMENTS)

    resolved_format = output_format
    if resolved_format is None:
        try:
            resolved_format = OutputFormat(str(defaults.get("output_format", "json")))
        except ValueError:
            resolved_format = OutputFormat.JSON

    output_dir = Path(defaults.get("output_dir", "output"))
    output_dir.mkdir(parents=True, exist_ok=True)

    if output is None:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        target = "boards" if list_boards else "_".join(selected_boards)
        stem = f"{site_id}_{target}_{timestamp}"
        if resolved_format is OutputFormat.JSON:
            output_path = output_dir / f"{stem}.json"
        elif resolved_format is OutputFormat.CSV:
            output_path = output_dir / f"{stem}.csv"
        else:
            output_path = output_dir / stem
    else:
        output_path = output

    try:
        results = asyncio.run(
            run_fetch(manager, site_id, selected_boards, thread, search, archived, list_boards)
        )
    except ChanScraperError as exc:
        typer.echo(f"エラー: {exc}", err=True)
        raise typer.Exit(code=exit_code_for(exc)) from exc

    export_results(results, output_path, resolved_format)

    errors = [r.error for r in results if r.error]
    if errors:
        raise typer.Exit(code=EXIT_EXHAUSTED)


async def fetch_with_clearance(
    manager: ScraperManager, domain: str, call: Callable[[], Awaitable[T]]
) -> T:
    """チャレンジ時は解除を促して一度だけ再試行"""
    return await manager.run_with_remediation(
        call, lambda url: prompt_for_clearance(manager, domain, url)
    )


def media_for(
    manager: ScraperManager, site_id: str, board: str, items: list[Thread] | list[Post]
) -> dict[int, MediaURLs]:
    media: dict[int, MediaURLs] = {}
    for item in items:
        urls = manager.resolve_media_urls(site_id, board, item)
        if urls.has_media:
            media[item.no] = urls
    return media


async def run_fetch(
    manager: ScraperManager,
    site_id: str,
    boards: list[str],
    thread_no: int | None,
    query: str | None,
    archived: bool,
    list_boards: bool,
) -> list[FetchResult]:
    """取得処理を実行."""
    domain = cookie_domain(manager.directory.require(site_id).base_url)
    fetched_at = datetime.now()

    if list_boards:
        logger.info("Fetching board list for {}", site_id)
        board_list = await fetch_with_clearance(
            manager, domain, lambda: manager.fetch_boards(site_id)
        )
        typer.echo(f"{site_id}: {len(board_list)}板")
        return [
            FetchResult(
                site=site_id, kind=ResultKind.BOARDS, fetched_at=fetched_at, boards=board_list
            )
        ]

    if query is not None:
        hits = await fetch_with_clearance(
            manager, domain, lambda: manager.search(site_id, boards, query, archived)
        )
        typer.echo(f"検索結果: {len(hits)}件")
        for hit in hits[:20]:
            typer.echo(f"  /{hit.board}/{hit.thread_no} {hit.subject or ''} {hit.snippet[:60]}")
        return [
            FetchResult(
                site=site_id,
                kind=ResultKind.SEARCH,
                fetched_at=fetched_at,
                board=",".join(boards),
                hits=hits,
            )
        ]

    if thread_no is not None:
        board = boards[0]
        posts = await fetch_with_clearance(
            manager, domain, lambda: manager.fetch_thread(site_id, board, thread_no)
        )
        typer.echo(f"/{board}/{thread_no}: {len(posts)}件の投稿")
        return [
            FetchResult(
                site=site_id,
                kind=ResultKind.THREAD,
                fetched_at=fetched_at,
                board=board,
                thread_no=thread_no,
                posts=posts,
                media=media_for(manager, site_id, board, posts),
                replies=manager.build_reply_index(posts),
            )
        ]

    results: list[FetchResult] = []
    first_error: ChanScraperError | None = None
    kind = ResultKind.ARCHIVE if archived else ResultKind.CATALOG
    for board in boards:
        try:
            if archived:
                threads = await fetch_with_clearance(
                    manager, domain, lambda: manager.fetch_archived_threads(site_id, board)
                )
            else:
                threads = await fetch_with_clearance(
                    manager, domain, lambda: manager.fetch_catalog(site_id, board)
                )
        except ChanScraperError as e:
            logger.error("Failed to fetch /{}/: {}", board, e)
            first_error = first_error or e
            results.append(
                FetchResult(
                    site=site_id, kind=kind, fetched_at=fetched_at, board=board, error=str(e)
                )
            )
            continue

        typer.echo(f"/{board}/: {len(threads)}スレッド")
        results.append(
            FetchResult(
                site=site_id,
                kind=kind,
                fetched_at=fetched_at,
                board=board,
                threads=threads,
                media=media_for(manager, site_id, board, threads),
            )
        )

    # 全ての板が失敗した場合は最初の失敗をそのまま返す
    if first_error is not None and all(r.error for r in results):
        raise first_error
    return results


def export_results(
    results: list[FetchResult], output: Path, output_format: OutputFormat
) -> None:
    """結果をファイルに出力."""
    include_media = bool(config.get_export_config().get("include_media_urls", True))
    exporter = DataExporter()
    if output_format is OutputFormat.JSON:
        if exporter.export_to_json(results, output, include_media):
            typer.echo(f"データをJSONファイルに出力しました: {output}")
    elif output_format is OutputFormat.CSV:
        if exporter.export_to_csv(results, output, include_media):
            typer.echo(f"データをCSVファイルに出力しました: {output}")
    else:
        json_file = output.with_suffix(".json")
        csv_file = output.with_suffix(".csv")
        summary_file = output.with_suffix(".txt")
        if exporter.export_to_json(results, json_file, include_media):
            typer.echo(f"JSONファイルに出力: {json_file}")
        if exporter.export_to_csv(results, csv_file, include_media):
            typer.echo(f"CSVファイルに出力: {csv_file}")
        if exporter.export_summary(results, summary_file):
            typer.echo(f"サマリーファイルに出力: {summary_file}")


if __name__ == "__main__":
    app()
