"""エンジン別JSONレスポンスのデコーダー.

各デコーダーはパース済みのJSONツリーを受け取り、形が合えば正規化済みの
レコードのリストを、合わなければ ``None`` を返す。例外は投げない。
"""

from __future__ import annotations

import posixpath
from collections.abc import Callable
from typing import Any

from loguru import logger

from ..models.data_models import Board, MediaRef, Post, Thread
from ..utils.text import as_int, as_str, normalize_board_code, normalize_extension, parse_iso8601
from .media import is_usable_extension

CatalogDecoder = Callable[[Any], list[Thread] | None]

USER_COUNT_KEYS = ("boardUsers", "users", "currentUsers", "boardActive", "visitors")
THREAD_COUNT_KEYS = (
    "boardThreads",
    "threads",
    "threadCount",
    "thread_count",
    "thread_total",
    "thread",
    "topics",
)
ATTACHMENT_KEYS = ("extra_files", "extraFiles", "extraFilesArray")


def _dicts(value: Any) -> list[dict[str, Any]] | None:
    if not isinstance(value, list):
        return None
    return [item for item in value if isinstance(item, dict)]


def _first_dict(value: Any) -> dict[str, Any] | None:
    items = _dicts(value)
    return items[0] if items else None


def _first_int(data: dict[str, Any], keys: tuple[str, ...]) -> int | None:
    for key in keys:
        value = as_int(data.get(key))
        if value is not None:
            return value
    return None


# ---------------------------------------------------------------------------
# メディア参照


def media_key_of(data: dict[str, Any]) -> str | None:
    """tim (文字列/整数) → mediaKey → filename の順でメディアキーを取得"""
    tim = data.get("tim")
    if isinstance(tim, str) and tim.strip():
        return tim.strip()
    tim_int = as_int(tim)
    if tim_int is not None:
        return str(tim_int)
    for key in ("mediaKey", "filename"):
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def keyed_media_ref(
    media_key: str | None, ext: Any, fpath: Any = None, mime: Any = None
) -> MediaRef | None:
    """キーと拡張子からMediaRefを生成 (拡張子が空・不正ならNone)"""
    extension = normalize_extension(as_str(ext))
    if not media_key or not is_usable_extension(extension):
        return None
    return MediaRef(
        media_key=media_key,
        extension=extension,
        fpath_hint=as_int(fpath),
        mime_hint=as_str(mime),
    )


def structured_media_ref(
    path: str, thumb: str, mime: str | None = None
) -> MediaRef | None:
    """明示パス付きのMediaRefを生成"""
    filename = posixpath.basename(path.split("?", 1)[0])
    stem, ext = posixpath.splitext(filename)
    extension = normalize_extension(ext)
    if not extension and mime and "/" in mime:
        extension = normalize_extension(mime.split("/", 1)[1])
    if not stem or not is_usable_extension(extension):
        return None
    return MediaRef(
        media_key=stem,
        extension=extension,
        mime_hint=mime,
        file_path=path,
        thumb_path=thumb,
    )


def lynxchan_file_ref(data: dict[str, Any]) -> MediaRef | None:
    path = as_str(data.get("path"))
    thumb = as_str(data.get("thumb"))
    if not path or not thumb:
        return None
    return structured_media_ref(path, thumb, as_str(data.get("mime")))


def _lynxchan_files(data: dict[str, Any]) -> list[MediaRef]:
    refs = [lynxchan_file_ref(f) for f in _dicts(data.get("files")) or []]
    return [ref for ref in refs if ref is not None]


def vichan_media_refs(data: dict[str, Any]) -> list[MediaRef]:
    """本体ファイルと追加ファイル (extra_files) のMediaRef"""
    refs: list[MediaRef] = []
    primary = keyed_media_ref(media_key_of(data), data.get("ext"), data.get("fpath"))
    if primary is not None:
        refs.append(primary)

    for key in ATTACHMENT_KEYS:
        attachments = _dicts(data.get(key))
        if attachments is None:
            continue
        for attachment in attachments:
            ref = keyed_media_ref(
                media_key_of(attachment), attachment.get("ext"), attachment.get("fpath")
            )
            if ref is not None:
                refs.append(ref)
        break
    return refs


def derive_full_path_from_thumb(thumb: str) -> str:
    """Lynxchanのサムネイルパスからフルサイズのパスを推定"""
    directory, filename = posixpath.split(thumb)
    if filename.startswith("t_"):
        return posixpath.join(directory, filename[2:])
    return thumb


# ---------------------------------------------------------------------------
# カタログ


def _lynxchan_catalog_thread(data: dict[str, Any]) -> Thread | None:
    no = as_int(data.get("threadId"))
    if no is None:
        no = as_int(data.get("postId"))
    if no is None:
        return None

    files = _lynxchan_files(data)
    omitted_posts = as_int(data.get("omittedPosts"))
    if omitted_posts is None:
        omitted_posts = as_int(data.get("ommitedPosts")) or 0
    visible = len(_dicts(data.get("posts")) or [])

    omitted_files = as_int(data.get("omittedFiles"))
    op_files = len(_dicts(data.get("files")) or [])
    if omitted_files is not None:
        images: int | None = omitted_files + op_files
    else:
        images = op_files if op_files > 0 else None

    return Thread(
        no=no,
        subject=as_str(data.get("subject")),
        body=as_str(data.get("message")) or as_str(data.get("markdown")),
        reply_count=omitted_posts + visible,
        image_count=images,
        media_refs=files,
    )


def decode_lynxchan_catalog(payload: Any) -> list[Thread] | None:
    """``{threads: [{threadId, ...}]}`` 形式"""
    if not isinstance(payload, dict):
        return None
    first = _first_dict(payload.get("threads"))
    if first is None or ("threadId" not in first and "postId" not in first):
        return None
    threads = [_lynxchan_catalog_thread(t) for t in _dicts(payload["threads"]) or []]
    return [t for t in threads if t is not None]


def _lynxchan_list_item(data: dict[str, Any]) -> Thread | None:
    no = as_int(data.get("threadId"))
    if no is None:
        return None
    refs: list[MediaRef] = []
    thumb = as_str(data.get("thumb"))
    if thumb:
        ref = structured_media_ref(derive_full_path_from_thumb(thumb), thumb)
        if ref is not None:
            refs.append(ref)
    return Thread(
        no=no,
        subject=as_str(data.get("subject")),
        body=as_str(data.get("message")),
        media_refs=refs,
    )


def decode_lynxchan_list(payload: Any) -> list[Thread] | None:
    """``[{threadId, subject, message, thumb}]`` 形式"""
    first = _first_dict(payload)
    if first is None or "threadId" not in first:
        return None
    threads = [_lynxchan_list_item(t) for t in _dicts(payload) or []]
    return [t for t in threads if t is not None]


def flat_thread(data: dict[str, Any]) -> Thread | None:
    """4chan/vichan系のフィールド名からThreadを生成"""
    no = as_int(data.get("no"))
    if no is None:
        no = as_int(data.get("threadId"))
    if no is None:
        no = as_int(data.get("postId"))
    if no is None:
        return None

    replies = as_int(data.get("replies"))
    if replies is None:
        replies = as_int(data.get("omittedPosts"))
    images = as_int(data.get("images"))
    if images is None:
        images = as_int(data.get("omittedFiles"))

    return Thread(
        no=no,
        subject=as_str(data.get("sub")) or as_str(data.get("subject")),
        body=as_str(data.get("com")) or as_str(data.get("message")),
        reply_count=replies,
        image_count=images,
        timestamp=as_int(data.get("time")),
        media_refs=vichan_media_refs(data),
    )


def decode_flat_catalog(payload: Any) -> list[Thread] | None:
    """``[{no, sub, com, tim, ext, ...}]`` 形式"""
    first = _first_dict(payload)
    if first is None or not any(k in first for k in ("no", "threadId", "postId")):
        return None
    threads = [flat_thread(t) for t in _dicts(payload) or []]
    return [t for t in threads if t is not None]


def decode_paged_catalog(payload: Any) -> list[Thread] | None:
    """``[{page, threads: [...]}]`` 形式 (ページにスレッドが平坦化された変種も許容)"""
    pages = _dicts(payload)
    if pages is None:
        return None
    result: list[Thread] = []
    for page in pages:
        threads = _dicts(page.get("threads"))
        if threads is not None:
            for data in threads:
                if as_int(data.get("no")) is None:
                    continue
                thread = flat_thread(data)
                if thread is not None:
                    result.append(thread)
        elif as_int(page.get("no")) is not None:
            thread = flat_thread(page)
            return [thread] if thread is not None else None
    return result


CATALOG_DECODERS: tuple[CatalogDecoder, ...] = (
    decode_lynxchan_catalog,
    decode_lynxchan_list,
    decode_flat_catalog,
    decode_paged_catalog,
)


def decode_catalog(payload: Any) -> list[Thread] | None:
    """カタログのデコーダーを順に試し、最初に空でない結果を返す"""
    for decoder in CATALOG_DECODERS:
        threads = decoder(payload)
        if threads:
            logger.debug("{} matched {} threads", decoder.__name__, len(threads))
            return threads
    return None


# ---------------------------------------------------------------------------
# スレッド


def decode_vichan_thread(payload: Any, thread_no: int) -> list[Post] | None:
    """``{posts: [{no, time, ...}]}`` 形式"""
    if not isinstance(payload, dict):
        return None
    first = _first_dict(payload.get("posts"))
    if first is None or "no" not in first:
        return None

    posts: list[Post] = []
    for data in _dicts(payload["posts"]) or []:
        no = as_int(data.get("no"))
        if no is None:
            continue
        posts.append(
            Post(
                no=no,
                thread_no=thread_no,
                timestamp=as_int(data.get("time")) or 0,
                author=as_str(data.get("name")),
                subject=as_str(data.get("sub")),
                body=as_str(data.get("com")),
                media_refs=vichan_media_refs(data),
            )
        )
    return posts


def _lynxchan_post(data: dict[str, Any], thread_no: int) -> Post | None:
    no = as_int(data.get("threadId"))
    if no is None:
        no = as_int(data.get("postId"))
    if no is None:
        return None
    return Post(
        no=no,
        thread_no=thread_no,
        timestamp=parse_iso8601(data.get("creation")) or 0,
        author=as_str(data.get("name")),
        subject=as_str(data.get("subject")),
        body=as_str(data.get("message")) or as_str(data.get("markdown")),
        media_refs=_lynxchan_files(data),
    )


def decode_lynxchan_thread(payload: Any, thread_no: int) -> list[Post] | None:
    """OP投稿オブジェクトに ``posts`` がネストした形式"""
    if not isinstance(payload, dict):
        return None
    if not any(k in payload for k in ("threadId", "postId", "creation", "message")):
        return None

    posts: list[Post] = []
    op = _lynxchan_post(payload, thread_no)
    if op is not None:
        posts.append(op)
    for data in _dicts(payload.get("posts")) or []:
        post = _lynxchan_post(data, thread_no)
        if post is not None:
            posts.append(post)
    return posts or None


def decode_thread(payload: Any, thread_no: int) -> list[Post] | None:
    """スレッドのデコーダーを順に試す"""
    for decoder in (decode_vichan_thread, decode_lynxchan_thread):
        posts = decoder(payload, thread_no)
        if posts:
            logger.debug("{} matched {} posts", decoder.__name__, len(posts))
            return posts
    return None


# ---------------------------------------------------------------------------
# 板一覧


def _make_board(
    code: Any,
    title: Any,
    description: Any = None,
    is_sfw: bool = True,
    active_users: int | None = None,
    thread_count: int | None = None,
) -> Board | None:
    if not isinstance(code, str):
        return None
    normalized = normalize_board_code(code)
    if not normalized:
        return None
    return Board(
        code=normalized,
        title=title if isinstance(title, str) and title else normalized,
        description=as_str(description),
        is_sfw=is_sfw,
        active_users=active_users,
        thread_count=thread_count,
    )


def _generic_board(data: dict[str, Any]) -> Board | None:
    code = as_str(data.get("board")) or as_str(data.get("uri"))
    ws_board = as_int(data.get("ws_board"))
    return _make_board(
        code,
        as_str(data.get("title")) or as_str(data.get("title_long")),
        as_str(data.get("meta_description")) or as_str(data.get("description")),
        is_sfw=ws_board == 1 if ws_board is not None else True,
        active_users=_first_int(data, USER_COUNT_KEYS),
        thread_count=_first_int(data, THREAD_COUNT_KEYS),
    )


def decode_boards(payload: Any) -> list[Board] | None:
    """``{boards: [...]}`` または ``[...]`` 形式の板一覧"""
    if isinstance(payload, dict):
        rows = _dicts(payload.get("boards"))
    else:
        rows = _dicts(payload)
    if rows is None:
        return None
    boards = [b for b in (_generic_board(row) for row in rows) if b is not None]
    return boards or None


def _lynxchan_container(payload: Any) -> dict[str, Any] | None:
    if not isinstance(payload, dict):
        return None
    inner = payload.get("data")
    return inner if isinstance(inner, dict) else payload


def decode_lynxchan_boards(payload: Any) -> tuple[list[Board], int] | None:
    """Lynxchanの ``boards.js?json=1`` 形式。板一覧と総ページ数を返す"""
    container = _lynxchan_container(payload)
    if container is None:
        return None
    rows = _dicts(container.get("boards"))
    if rows is None:
        return None

    boards: list[Board] = []
    for row in rows:
        board = _make_board(
            row.get("boardUri"),
            row.get("boardName"),
            row.get("boardDescription"),
            active_users=_first_int(row, USER_COUNT_KEYS),
            thread_count=_first_int(row, THREAD_COUNT_KEYS),
        )
        if board is not None:
            boards.append(board)
    if not boards:
        return None
    return boards, as_int(container.get("pageCount")) or 1


def decode_kun_board_search(payload: Any) -> tuple[list[Board], int | None] | None:
    """8kunの board-search.php 形式。板一覧と次のオフセットを返す"""
    if not isinstance(payload, dict):
        return None
    rows = payload.get("boards")
    rows = rows if isinstance(rows, dict) else {}
    order = payload.get("order")
    order = [uri for uri in order if isinstance(uri, str)] if isinstance(order, list) else []
    omitted = as_int(payload.get("omitted")) or 0
    search = payload.get("search")
    page_offset = as_int(search.get("page")) if isinstance(search, dict) else None
    page_offset = page_offset or 0

    boards: list[Board] = []
    for uri in order:
        row = rows.get(uri)
        row = row if isinstance(row, dict) else {}
        tags = row.get("tags")
        description = (
            " ".join(t for t in tags if isinstance(t, str)) if isinstance(tags, list) else None
        )
        board = _make_board(
            as_str(row.get("uri")) or uri,
            row.get("title"),
            description,
            active_users=as_int(row.get("active")),
        )
        if board is not None:
            boards.append(board)

    remaining = max(0, omitted - page_offset)
    next_offset = page_offset + len(boards) if remaining > 0 and boards else None
    return boards, next_offset
