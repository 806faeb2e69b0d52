"""エンジン別のメディアURL解決."""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable, Sequence
from urllib.parse import urljoin, urlsplit, urlunsplit

from loguru import logger

from ..models.data_models import (
    EngineKind,
    FetchResponse,
    MediaRef,
    MediaURLs,
    Post,
    SiteDescriptor,
    Thread,
)
from ..utils.text import normalize_extension
from .errors import ExhaustedError, NetworkError

FOURCHAN_MEDIA_BASE = "https://i.4cdn.org/"
SEVENCHAN_MEDIA_BASE = "https://7chan.org/"
KUN_MEDIA_BASE = "https://nerv.8kun.top/"
DEFAULT_MIRROR_HOSTS: tuple[str, ...] = ("nerv.8kun.top",)

SEVENCHAN_THUMB_EXTENSIONS = frozenset({"jpeg", "jpg", "png", "gif", "webp"})
KUN_THUMB_EXTENSIONS = frozenset({"jpeg", "jpg", "png", "gif"})

ACCEPT_IMAGE = "image/avif,image/webp,image/apng,image/*,*/*;q=0.8"

_VALID_EXTENSION_RE = re.compile(r"^[a-z0-9]{1,8}$")


def is_usable_extension(extension: str) -> bool:
    return bool(_VALID_EXTENSION_RE.match(extension))


def mirror_candidates(url: str, hosts: Sequence[str] = DEFAULT_MIRROR_HOSTS) -> list[str]:
    """ミラーホストのURL候補を返す (元のURLが先頭)"""
    parts = urlsplit(url)
    if parts.hostname not in hosts:
        return [url]
    result = [url]
    for alt in hosts:
        if alt == parts.hostname:
            continue
        result.append(urlunsplit(parts._replace(netloc=alt)))
    return result


def _absolute(base_url: str, path_or_url: str) -> str:
    if urlsplit(path_or_url).scheme:
        return path_or_url
    return urljoin(base_url, path_or_url)


def _kun_urls(
    board: str, key: str, ext: str, fpath_hint: int | None, spoiler: bool
) -> tuple[str, str]:
    if spoiler:
        spoiler_url = f"{KUN_MEDIA_BASE}static/assets/{board}/spoiler.png"
        return spoiler_url, spoiler_url

    thumb_ext = ext if ext in KUN_THUMB_EXTENSIONS else "jpg"
    if (fpath_hint if fpath_hint is not None else 1) == 1:
        return (
            f"{KUN_MEDIA_BASE}file_store/{key}.{ext}",
            f"{KUN_MEDIA_BASE}file_store/thumb/{key}.{thumb_ext}",
        )
    return (
        f"{KUN_MEDIA_BASE}{board}/src/{key}.{ext}",
        f"{KUN_MEDIA_BASE}{board}/thumb/{key}.{thumb_ext}",
    )


def resolve(
    engine_kind: EngineKind,
    base_url: str,
    board: str,
    media_key: str | None,
    extension: str | None,
    fpath_hint: int | None = None,
    spoiler: bool = False,
    mirror_hosts: Sequence[str] = DEFAULT_MIRROR_HOSTS,
) -> MediaURLs:
    """フルサイズとサムネイルのURLを計算

    メディアキーが無い、または拡張子が空・不正な場合は空の結果を返す。
    """
    key = (media_key or "").strip()
    ext = normalize_extension(extension)
    if not key or not is_usable_extension(ext):
        return MediaURLs()

    if not base_url.endswith("/"):
        base_url += "/"

    if engine_kind is EngineKind.EIGHTKUN:
        full, thumb = _kun_urls(board, key, ext, fpath_hint, spoiler)
    elif engine_kind is EngineKind.FOURCHAN:
        full = f"{FOURCHAN_MEDIA_BASE}{board}/{key}.{ext}"
        thumb = f"{FOURCHAN_MEDIA_BASE}{board}/{key}s.jpg"
    elif engine_kind is EngineKind.SEVENCHAN:
        thumb_ext = ext if ext in SEVENCHAN_THUMB_EXTENSIONS else "jpg"
        full = f"{SEVENCHAN_MEDIA_BASE}{board}/src/{key}.{ext}"
        thumb = f"{SEVENCHAN_MEDIA_BASE}{board}/thumb/{key}s.{thumb_ext}"
    else:
        full = f"{base_url}{board}/src/{key}.{ext}"
        thumb = f"{base_url}{board}/thumb/{key}s.jpg"

    return MediaURLs(
        full_url=full,
        thumb_url=thumb,
        full_candidates=mirror_candidates(full, mirror_hosts),
        thumb_candidates=mirror_candidates(thumb, mirror_hosts),
    )


def resolve_ref(
    site: SiteDescriptor,
    board: str,
    ref: MediaRef | None,
    prefer_spoiler: bool = False,
    mirror_hosts: Sequence[str] = DEFAULT_MIRROR_HOSTS,
) -> MediaURLs:
    """MediaRefからURLを解決 (明示パスがあればそれを優先)"""
    if ref is None:
        return MediaURLs()

    if ref.file_path and ref.thumb_path and not (
        prefer_spoiler and site.engine_kind is EngineKind.EIGHTKUN
    ):
        full = _absolute(site.base_url, ref.file_path)
        thumb = _absolute(site.base_url, ref.thumb_path)
        return MediaURLs(
            full_url=full,
            thumb_url=thumb,
            mime_hint=ref.mime_hint,
            full_candidates=mirror_candidates(full, mirror_hosts),
            thumb_candidates=mirror_candidates(thumb, mirror_hosts),
        )

    urls = resolve(
        site.engine_kind,
        site.base_url,
        board,
        ref.media_key,
        ref.extension,
        ref.fpath_hint,
        spoiler=prefer_spoiler,
        mirror_hosts=mirror_hosts,
    )
    if ref.mime_hint and urls.has_media:
        return urls.model_copy(update={"mime_hint": ref.mime_hint})
    return urls


def resolve_item(
    site: SiteDescriptor,
    board: str,
    item: Thread | Post,
    prefer_spoiler: bool = False,
    mirror_hosts: Sequence[str] = DEFAULT_MIRROR_HOSTS,
) -> MediaURLs:
    """スレッドまたは投稿の先頭メディアのURLを解決"""
    for ref in item.media_refs:
        urls = resolve_ref(site, board, ref, prefer_spoiler, mirror_hosts)
        if urls.has_media:
            return urls
    return MediaURLs()


def resolve_all(
    site: SiteDescriptor,
    board: str,
    item: Thread | Post,
    mirror_hosts: Sequence[str] = DEFAULT_MIRROR_HOSTS,
) -> list[MediaURLs]:
    """全メディアのURLを解決 (フルURLで重複排除)"""
    seen: set[str] = set()
    result: list[MediaURLs] = []
    for ref in item.media_refs:
        urls = resolve_ref(site, board, ref, mirror_hosts=mirror_hosts)
        if urls.full_url is None or urls.full_url in seen:
            continue
        seen.add(urls.full_url)
        result.append(urls)
    return result


async def fetch_media(
    fetch: Callable[[str, str], Awaitable[FetchResponse]],
    candidates: Sequence[str],
) -> FetchResponse:
    """候補URLを順に試し、最初に成功したレスポンスを返す"""
    last_error: str | None = None
    for url in candidates:
        try:
            response = await fetch(url, ACCEPT_IMAGE)
        except NetworkError as e:
            logger.debug("Media candidate failed: {}", e)
            last_error = str(e)
            continue
        if response.ok:
            return response
        logger.debug("Media candidate {} returned HTTP {}", url, response.status)
        last_error = f"HTTP {response.status} for {url}"
    raise ExhaustedError("media", last_error)
