"""JSON APIが使えないサイト向けのHTMLスクレイパー.

スレッド単位のコンテナ (``thread_<no>``) を優先し、見つからない場合のみ
パーマリンクを起点にした走査にフォールバックする。
"""

from __future__ import annotations

import re
from typing import Any

from bs4 import BeautifulSoup
from loguru import logger

from ..models.data_models import Board, MediaRef, Post, Thread
from ..utils.text import clean_html, collapse_whitespace, digits_only, normalize_board_code
from .media import SEVENCHAN_THUMB_EXTENSIONS, is_usable_extension

LINK_SCAN_WINDOW = 8000

_FLAGS = re.IGNORECASE | re.DOTALL
SUBJECT_RE = re.compile(r"<span[^>]*class=['\"][^'\"]*subject[^'\"]*['\"][^>]*>(.*?)</span>", _FLAGS)
MESSAGE_RE = re.compile(
    r"<p[^>]*class=['\"][^'\"]*(?:message|postMessage)[^'\"]*['\"][^>]*>(.*?)</p>", _FLAGS
)
NAME_RE = re.compile(
    r"<span[^>]*class=['\"][^'\"]*(?:postername|name)[^'\"]*['\"][^>]*>(.*?)</span>", _FLAGS
)
ABBREV_RE = re.compile(r"<span[^>]*class=['\"][^'\"]*abbrev[^'\"]*['\"][^>]*>.*?</span>", _FLAGS)
REPLY_MARKER_RE = re.compile(r"id=['\"]reply_(\d+)['\"]", re.IGNORECASE)
POST_START_RE = re.compile(r"id=['\"](?:p|reply_)(\d+)['\"]", re.IGNORECASE)
LOOSE_THREAD_START_RE = re.compile(
    r"<div[^>]*class=['\"][^'\"]*thread[^'\"]*['\"][^>]*id=['\"]thread_(\d+)(?:_[a-z0-9]+)?['\"]",
    re.IGNORECASE,
)
RELATIVE_THREAD_LINK_RE = re.compile(r"href=['\"]res/(\d+)\.html", re.IGNORECASE)
LINK_SCAN_THUMB_RE = re.compile(r"(?:/thumb/|/)\s*(\d+)s\.(jpg|jpeg|png|gif|webp)", re.IGNORECASE)
THUMB_IMG_BEFORE_SRC_RE = re.compile(
    r"<img[^>]*class=['\"][^'\"]*thumb[^'\"]*['\"][^>]*src=['\"][^'\"]*?(\d+)s\.(jpg|jpeg|png|gif|webp)",
    re.IGNORECASE,
)
THUMB_IMG_AFTER_SRC_RE = re.compile(
    r"<img[^>]*src=['\"][^'\"]*?(\d+)s\.(jpg|jpeg|png|gif|webp)[^'\"]*['\"][^>]*class=['\"][^'\"]*thumb[^'\"]*['\"]",
    re.IGNORECASE,
)
RELATIVE_PAGE_RE = re.compile(r"href=['\"](\d+)\.html['\"]", re.IGNORECASE)
QUERY_PAGE_RE = re.compile(r"[?&]page=(\d+)", re.IGNORECASE)

ENDCHAN_ROW_RE = re.compile(r"<div[^>]*class=['\"][^'\"]*boardsCell[^'\"]*['\"][^>]*>(.*?)</div>", _FLAGS)
ENDCHAN_COLUMN_RE = re.compile(r"<span[^>]*class=['\"][^'\"]*col(\d+)[^'\"]*['\"][^>]*>(.*?)</span>", _FLAGS)
ENDCHAN_CODE_RE = re.compile(r"href=['\"]/?([^/'\"\s]+)/", re.IGNORECASE)
ENDCHAN_CODE_FALLBACK_RE = re.compile(r"/([^/\s]+?)/")
ENDCHAN_TITLE_SEPARATORS = (" - ", " — ", " – ", " -", "- ", "—", "–")
KUN_HREF_RE = re.compile(r"^\s*/([^/'\"]+)/")


def is_challenge_page(html: str) -> bool:
    """Cloudflareなどのチャレンジページかどうか (大文字小文字を区別しない)"""
    lower = html.lower()
    if "just a moment" in lower and "_cf_chl_opt" in lower:
        return True
    if "challenge-error-text" in lower:
        return True
    return "enable javascript and cookies" in lower


def strip_abbrev(fragment: str) -> str:
    """「Message too long」の省略表示を除去"""
    return ABBREV_RE.sub("", fragment)


def _first_group(pattern: re.Pattern[str], text: str) -> str | None:
    match = pattern.search(text)
    return match.group(1) if match else None


def _file_pattern(board: str) -> re.Pattern[str]:
    return re.compile(rf"/{re.escape(board)}/src/(\d+)\.(\w+)", re.IGNORECASE)


def scraped_media_ref(board: str, tim: str, ext: str, thumb_ext: str | None) -> MediaRef | None:
    """HTMLから得たファイル情報をMediaRefに変換"""
    extension = ext.strip().lower()
    if not is_usable_extension(extension):
        return None
    if thumb_ext is None:
        thumb_ext = extension if extension in SEVENCHAN_THUMB_EXTENSIONS else "jpg"
    return MediaRef(
        media_key=tim,
        extension=extension,
        file_path=f"/{board}/src/{tim}.{extension}",
        thumb_path=f"/{board}/thumb/{tim}s.{thumb_ext.lower()}",
    )


# ---------------------------------------------------------------------------
# カタログ / 板インデックス


def _op_window(chunk: str, thread_no: int) -> str:
    """スレッド内のOP部分 (最初の返信マーカーまで) を切り出す"""
    op = re.search(rf"id=['\"]p{thread_no}['\"]", chunk, re.IGNORECASE)
    if op is None:
        return chunk
    reply = REPLY_MARKER_RE.search(chunk, op.start())
    end = reply.start() if reply else len(chunk)
    return chunk[op.start() : end]


def _thread_from_window(window: str, board: str, thread_no: int, link_scan: bool) -> Thread:
    subject = _first_group(SUBJECT_RE, window)
    message = _first_group(MESSAGE_RE, window)

    refs: list[MediaRef] = []
    file_match = _file_pattern(board).search(window)
    if file_match:
        tim, ext = file_match.group(1), file_match.group(2).lower()
        thumb_ext: str | None
        if link_scan:
            # 最初に見つかったサムネイルが同じファイルの場合のみ採用
            thumb_match = LINK_SCAN_THUMB_RE.search(window)
            if thumb_match and thumb_match.group(1) == tim:
                thumb_ext = thumb_match.group(2)
            else:
                thumb_ext = ext
        else:
            thumb_match = re.search(
                rf"(?:/thumb/|_files/|/)(?:t_)?{re.escape(tim)}s\.(jpg|jpeg|png|gif|webp)",
                window,
                re.IGNORECASE,
            )
            thumb_ext = thumb_match.group(1) if thumb_match else None
        ref = scraped_media_ref(board, tim, ext, thumb_ext)
        if ref is not None:
            refs.append(ref)

    return Thread(
        no=thread_no,
        subject=clean_html(subject) if subject is not None else None,
        body=strip_abbrev(message) if message is not None else None,
        media_refs=refs,
    )


def scrape_catalog_containers(html: str, board: str) -> list[Thread] | None:
    """``<div class="thread" id="thread_<no>">`` コンテナ単位で抽出"""
    strict = re.compile(
        rf"<div[^>]*class=['\"][^'\"]*thread[^'\"]*['\"][^>]*id=['\"]thread_(\d+)_{re.escape(board)}['\"]",
        re.IGNORECASE,
    )
    matches = list(strict.finditer(html)) or list(LOOSE_THREAD_START_RE.finditer(html))
    if not matches:
        return None

    threads: list[Thread] = []
    for i, match in enumerate(matches):
        thread_no = int(match.group(1))
        end = matches[i + 1].start() if i + 1 < len(matches) else len(html)
        chunk = html[match.start() : end]
        op_window = _op_window(chunk, thread_no)
        threads.append(_thread_from_window(op_window, board, thread_no, link_scan=False))
    return threads


def scrape_catalog_links(html: str, board: str) -> list[Thread]:
    """スレッドへのリンクを起点に後続テキストから抽出 (低信頼のフォールバック)"""
    absolute = re.compile(rf"href=['\"][^'\"]*/{re.escape(board)}/res/(\d+)\.html", re.IGNORECASE)
    matches = list(absolute.finditer(html)) + list(RELATIVE_THREAD_LINK_RE.finditer(html))

    threads: list[Thread] = []
    seen: set[int] = set()
    for match in matches:
        thread_no = int(match.group(1))
        if thread_no in seen:
            continue
        seen.add(thread_no)
        window = html[match.start() : match.start() + LINK_SCAN_WINDOW]
        threads.append(_thread_from_window(window, board, thread_no, link_scan=True))
    return threads


def scrape_catalog_html(html: str, board: str) -> list[Thread]:
    """カタログ/インデックスHTMLからスレッド一覧を抽出"""
    threads = scrape_catalog_containers(html, board)
    if threads:
        logger.debug("Container scrape found {} threads on /{}/", len(threads), board)
        return threads
    threads = scrape_catalog_links(html, board)
    logger.debug("Link scan found {} threads on /{}/", len(threads), board)
    return threads


def find_max_index_page(html: str, board: str, cap: int = 15) -> int:
    """インデックスのページリンクから最大ページ番号を求める (上限cap)"""
    absolute = re.compile(rf"/{re.escape(board)}/(\d+)\.html", re.IGNORECASE)
    max_page = 1
    for pattern in (absolute, RELATIVE_PAGE_RE, QUERY_PAGE_RE):
        for match in pattern.finditer(html):
            max_page = max(max_page, int(match.group(1)))
    return min(max_page, cap)


# ---------------------------------------------------------------------------
# スレッド


def _thread_post_media(window: str, board: str) -> list[MediaRef]:
    file_match = _file_pattern(board).search(window)
    thumb_match = THUMB_IMG_BEFORE_SRC_RE.search(window) or THUMB_IMG_AFTER_SRC_RE.search(window)

    file_tim = file_match.group(1) if file_match else None
    file_ext = file_match.group(2).lower() if file_match else None
    thumb_tim = thumb_match.group(1) if thumb_match else None
    thumb_ext = thumb_match.group(2).lower() if thumb_match else None

    tim = file_tim or thumb_tim
    if tim is None:
        return []
    ext = file_ext or thumb_ext or "jpg"
    candidate = thumb_ext or ext
    ref = scraped_media_ref(
        board, tim, ext, candidate if candidate in SEVENCHAN_THUMB_EXTENSIONS else "jpg"
    )
    return [ref] if ref is not None else []


def scrape_thread_html(html: str, board: str, thread_no: int) -> list[Post]:
    """Kusaba/7chan形式のスレッドHTMLから投稿を抽出"""
    matches = list(POST_START_RE.finditer(html))
    posts: list[Post] = []
    seen: set[int] = set()
    for i, match in enumerate(matches):
        no = int(match.group(1))
        if no in seen:
            continue
        seen.add(no)
        end = matches[i + 1].start() if i + 1 < len(matches) else len(html)
        window = html[match.start() : end]

        name = _first_group(NAME_RE, window)
        subject = _first_group(SUBJECT_RE, window)
        posts.append(
            Post(
                no=no,
                thread_no=thread_no,
                timestamp=0,
                author=clean_html(name) if name is not None else None,
                subject=clean_html(subject) if subject is not None else None,
                body=_first_group(MESSAGE_RE, window),
                media_refs=_thread_post_media(window, board),
            )
        )
    return posts


# ---------------------------------------------------------------------------
# 板一覧


def _cell_text(cell: Any) -> str:
    return cell.get_text(" ", strip=True)


def scrape_kun_index_boards(html: str) -> list[Board] | None:
    """8kunのindex.htmlの板テーブルを解析"""
    soup = BeautifulSoup(html, "html.parser")
    rows = soup.find_all("tr")
    if not rows:
        return None

    board_idx, title_idx, active_idx, tags_idx = 0, 1, 3, 4
    start_at = 0
    for i, row in enumerate(rows):
        headers = row.find_all("th")
        if not headers:
            continue
        labels = [_cell_text(th).lower() for th in headers]
        if not any("active" in label and "isp" in label for label in labels):
            continue
        for j, label in enumerate(labels):
            if "board" in label:
                board_idx = j
            if "title" in label:
                title_idx = j
            if "active" in label and "isp" in label:
                active_idx = j
            if "tag" in label:
                tags_idx = j
        start_at = i + 1
        break

    boards: list[Board] = []
    seen: set[str] = set()
    for row in rows[start_at:]:
        cells = row.find_all("td")
        if len(cells) < 4:
            continue

        code_cell = cells[min(max(board_idx, 0), len(cells) - 1)]
        code = ""
        for link in code_cell.find_all("a", href=True):
            match = KUN_HREF_RE.match(str(link["href"]))
            if match:
                code = match.group(1)
                break
        if not code:
            code = _cell_text(code_cell)
        code = normalize_board_code(code)
        if not code or code in seen:
            continue
        seen.add(code)

        title_cell = cells[title_idx] if title_idx < len(cells) else cells[1]
        title = _cell_text(title_cell) or code

        active = digits_only(_cell_text(cells[active_idx])) if active_idx < len(cells) else None
        if active is None:
            # Board/Title以外で2番目の数値列が Active ISPs であることが多い
            numeric: list[int] = []
            for j, cell in enumerate(cells):
                if j in (board_idx, title_idx):
                    continue
                value = digits_only(_cell_text(cell))
                if value is not None:
                    numeric.append(value)
            active = numeric[1] if len(numeric) >= 2 else None

        tags = collapse_whitespace(_cell_text(cells[tags_idx])) if tags_idx < len(cells) else ""
        boards.append(
            Board(code=code, title=title, description=tags or None, active_users=active)
        )
    return boards or None


def _endchan_columns(row_html: str) -> dict[int, str]:
    return {int(m.group(1)): clean_html(m.group(2)) for m in ENDCHAN_COLUMN_RE.finditer(row_html)}


def _endchan_title(column: str | None, fallback: str) -> str:
    text = (column or "").strip()
    if not text:
        return fallback
    for separator in ENDCHAN_TITLE_SEPARATORS:
        if separator in text:
            after = text.split(separator, 1)[1].strip()
            if after:
                text = after
                break
    return text.strip("☆✶") or fallback


def _attribute_int(row_html: str, keys: tuple[str, ...]) -> int | None:
    for key in keys:
        match = re.search(rf"\b{re.escape(key)}\s*=\s*['\"]?(\d+)", row_html, re.IGNORECASE)
        if match:
            return int(match.group(1))
    return None


def scrape_endchan_boards(html: str) -> list[Board] | None:
    """Endchanの板一覧HTML (boardsCell行) を解析"""
    lower = html.lower()
    if "div#boardswrapper" not in lower and "divboards" not in lower:
        return None

    user_col = 5
    thread_col: int | None = None
    boards: list[Board] = []
    for match in ENDCHAN_ROW_RE.finditer(html):
        row_html = match.group(0)
        if "boardscellheader" in row_html.lower():
            user_col, thread_col = 5, None
            found_users = False
            for idx, text in sorted(_endchan_columns(row_html).items()):
                label = text.lower()
                if not found_users and "user" in label:
                    user_col, found_users = idx, True
                if thread_col is None and "thread" in label:
                    thread_col = idx
            continue

        columns = _endchan_columns(row_html)
        if not columns:
            continue

        code_match = ENDCHAN_CODE_RE.search(row_html) or ENDCHAN_CODE_FALLBACK_RE.search(
            columns.get(1) or columns.get(0) or ""
        )
        if code_match is None:
            continue
        code = normalize_board_code(code_match.group(1))
        if not code:
            continue

        users = digits_only(columns.get(user_col))
        if users is None:
            users = _attribute_int(row_html, ("data-user", "data-users", "data-boardusers"))
        threads = digits_only(columns.get(thread_col)) if thread_col is not None else None
        if threads is None:
            threads = _attribute_int(row_html, ("data-thread", "data-threads", "data-threadcount"))

        boards.append(
            Board(
                code=code,
                title=_endchan_title(columns.get(1), code),
                description=columns.get(2) or columns.get(1),
                active_users=users,
                thread_count=threads,
            )
        )
    return boards or None


def scrape_board_page_title(html: str, code: str) -> str | None:
    """板ページの ``<title>/code/ - Title</title>`` からタイトルを取得"""
    match = re.search(
        rf"<title>\s*/{re.escape(code)}/\s*-\s*(.*?)</title>", html, re.IGNORECASE | re.DOTALL
    )
    if match is None:
        return None
    title = clean_html(match.group(1))
    return title or None
