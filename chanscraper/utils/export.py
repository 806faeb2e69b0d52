"""データエクスポート用ユーティリティ."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

import pandas as pd
from loguru import logger

from ..models.data_models import FetchResult, MediaURLs, Post, Thread


def _media_fields(urls: MediaURLs | None) -> dict[str, Any]:
    if urls is None:
        return {"media_url": None, "thumb_url": None}
    return {"media_url": urls.full_url, "thumb_url": urls.thumb_url}


def _item_data(item: Thread | Post, result: FetchResult, include_media: bool) -> dict[str, Any]:
    data = item.model_dump(exclude={"media_refs"})
    data["media_count"] = len(item.media_refs)
    if include_media:
        data.update(_media_fields(result.media.get(item.no)))
    return data


class DataExporter:
    """データエクスポート用クラス"""

    @staticmethod
    def result_to_dict(result: FetchResult, include_media: bool = True) -> dict[str, Any]:
        """取得結果を辞書に変換"""
        data: dict[str, Any] = {
            "site": result.site,
            "kind": result.kind.value,
            "board": result.board,
            "thread_no": result.thread_no,
            "fetched_at": result.fetched_at.isoformat(),
            "error": result.error,
        }
        if result.boards:
            data["boards"] = [board.model_dump() for board in result.boards]
        if result.threads:
            data["threads"] = [_item_data(t, result, include_media) for t in result.threads]
        if result.posts:
            posts = []
            for post in result.posts:
                post_data = _item_data(post, result, include_media)
                post_data["replied_by"] = result.replies.get(post.no, [])
                posts.append(post_data)
            data["posts"] = posts
        if result.hits:
            data["hits"] = [hit.model_dump() for hit in result.hits]
        return data

    @staticmethod
    def export_to_json(
        results: list[FetchResult], output_path: str | Path, include_media: bool = True
    ) -> bool:
        """JSONファイルにエクスポート"""
        try:
            output_path = Path(output_path)

            export_data: dict[str, Any] = {
                "exported_at": datetime.now().isoformat(),
                "results": [
                    DataExporter.result_to_dict(result, include_media) for result in results
                ],
            }

            with open(output_path, "w", encoding="utf-8") as f:
                json.dump(export_data, f, ensure_ascii=False, indent=2)

            logger.info(f"Data exported to JSON: {output_path}")
            return True

        except Exception as e:
            logger.error(f"Error exporting to JSON: {e}")
            return False

    @staticmethod
    def to_rows(results: list[FetchResult], include_media: bool = True) -> list[dict[str, Any]]:
        """全結果を1行1項目に平坦化"""
        rows: list[dict[str, Any]] = []
        for result in results:
            common = {
                "site": result.site,
                "kind": result.kind.value,
                "board": result.board or "",
                "fetched_at": result.fetched_at.isoformat(),
            }
            for board in result.boards:
                rows.append({**common, **board.model_dump(), "board": board.code})
            for thread in result.threads:
                rows.append({**common, **_item_data(thread, result, include_media)})
            for post in result.posts:
                row = {**common, **_item_data(post, result, include_media)}
                row["replied_by"] = ",".join(str(n) for n in result.replies.get(post.no, []))
                rows.append(row)
            for hit in result.hits:
                rows.append({**common, **hit.model_dump()})
        return rows

    @staticmethod
    def export_to_csv(
        results: list[FetchResult], output_path: str | Path, include_media: bool = True
    ) -> bool:
        """CSVファイルにエクスポート"""
        try:
            output_path = Path(output_path)

            # DataFrameに変換してCSV出力
            df = pd.DataFrame(DataExporter.to_rows(results, include_media))
            df.to_csv(output_path, index=False, encoding="utf-8")

            logger.info(f"Data exported to CSV: {output_path}")
            return True

        except Exception as e:
            logger.error(f"Error exporting to CSV: {e}")
            return False

    @staticmethod
    def export_summary(results: list[FetchResult], output_path: str | Path) -> bool:
        """サマリー情報をテキストファイルにエクスポート"""
        try:
            output_path = Path(output_path)

            with open(output_path, "w", encoding="utf-8") as f:
                f.write("Chan Scraper - Fetch Summary\n")
                f.write("=" * 40 + "\n\n")
                f.write(f"Export Time: {datetime.now().isoformat()}\n\n")

                total_items = 0
                total_errors = 0

                for result in results:
                    f.write(f"Site: {result.site}\n")
                    f.write(f"Kind: {result.kind.value}\n")
                    if result.board:
                        f.write(f"Board: /{result.board}/\n")
                    if result.thread_no is not None:
                        f.write(f"Thread: {result.thread_no}\n")
                    f.write(f"Fetched At: {result.fetched_at.isoformat()}\n")
                    f.write(f"Item Count: {result.item_count}\n")
                    if result.error:
                        f.write(f"Error: {result.error}\n")

                    f.write("\n" + "-" * 30 + "\n\n")

                    total_items += result.item_count
                    total_errors += 1 if result.error else 0

                f.write(f"Total Items: {total_items}\n")
                f.write(f"Total Errors: {total_errors}\n")

            logger.info(f"Summary exported to: {output_path}")
            return True

        except Exception as e:
            logger.error(f"Error exporting summary: {e}")
            return False
