#!/usr/bin/env python3
"""
Chan Scraper の使用例
"""
import asyncio
from datetime import datetime
from pathlib import Path

from chanscraper.models.data_models import FetchResult, ResultKind
from chanscraper.scraper.errors import ChanScraperError
from chanscraper.scraper.manager import ScraperManager
from chanscraper.utils.export import DataExporter


async def main():
    """サンプル実行"""
    print("Chan Scraper - 使用例")
    print("=" * 40)

    # スクレイパーマネージャーを作成
    manager = ScraperManager()

    # 利用可能なサイトを表示
    available_sites = manager.get_available_sites()
    print(f"利用可能なサイト: {available_sites}")

    # 4chanの/g/のカタログを取得
    print("\n4chan /g/ のカタログを取得中...")
    threads = await manager.fetch_catalog("4chan", "g")
    print(f"取得スレッド数: {len(threads)}")

    print("\nスレッド一覧:")
    for i, thread in enumerate(threads[:3], 1):  # 最初の3スレッドのみ表示
        urls = manager.resolve_media_urls("4chan", "g", thread)
        print(f"{i}. No.{thread.no} {thread.subject or '(無題)'}")
        print(f"   返信数: {thread.reply_count}")
        print(f"   画像: {urls.full_url}")
        print()

    results = [
        FetchResult(
            site="4chan",
            kind=ResultKind.CATALOG,
            fetched_at=datetime.now(),
            board="g",
            threads=threads,
        )
    ]

    # 先頭スレッドの返信関係を表示
    if threads:
        posts = await manager.fetch_thread("4chan", "g", threads[0].no)
        replies = manager.build_reply_index(posts)
        print(f"No.{threads[0].no} の投稿数: {len(posts)}")
        print(f"被引用の多い投稿: {sorted(replies, key=lambda n: -len(replies[n]))[:3]}")

    # 横断検索
    hits = await manager.search("4chan", ["g", "sci"], "linux")
    print(f"\n'linux' の検索結果: {len(hits)}件")

    # JSONファイルに出力
    output_dir = Path("output")
    output_dir.mkdir(exist_ok=True)

    exporter = DataExporter()
    json_file = output_dir / "example_output.json"

    if exporter.export_to_json(results, json_file):
        print(f"結果をJSONファイルに出力しました: {json_file}")

    # サマリーファイルに出力
    summary_file = output_dir / "example_summary.txt"
    if exporter.export_summary(results, summary_file):
        print(f"サマリーをファイルに出力しました: {summary_file}")


if __name__ == '__main__':
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n実行が中断されました。")
    except ChanScraperError as e:
        print(f"エラーが発生しました: {e}")
