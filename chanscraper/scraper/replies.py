"""投稿間の返信関係の索引."""

from __future__ import annotations

import re
from collections.abc import Iterable

from ..models.data_models import Post
from ..utils.text import clean_html

QUOTE_RE = re.compile(r">>(\d+)")


def quoted_numbers(post: Post) -> set[int]:
    """本文中の ``>>123`` 形式の引用先番号"""
    return {int(n) for n in QUOTE_RE.findall(clean_html(post.body))}


def build_reply_index(posts: Iterable[Post]) -> dict[int, list[int]]:
    """引用された投稿番号 → 引用している投稿番号 (昇順・重複なし)"""
    index: dict[int, set[int]] = {}
    for post in posts:
        for target in quoted_numbers(post):
            index.setdefault(target, set()).add(post.no)
    return {target: sorted(sources) for target, sources in index.items()}
