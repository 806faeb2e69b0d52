"""板・スレッド・投稿を統一的に扱うためのPydanticモデル定義."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EngineKind(str, Enum):
    """掲示板エンジンの種別."""

    FOURCHAN = "fourchan"
    VICHAN = "vichan"
    SEVENCHAN = "sevenchan"
    EIGHTKUN = "eightkun"
    LYNXCHAN = "lynxchan"


class SiteDescriptor(BaseModel):
    """サイト定義."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    base_url: str
    engine_kind: EngineKind

    @field_validator("base_url")
    @classmethod
    def _ensure_trailing_slash(cls, value: str) -> str:
        return value if value.endswith("/") else value + "/"


class Board(BaseModel):
    """板情報."""

    model_config = ConfigDict(frozen=True)

    code: str
    title: str
    description: str | None = None
    is_sfw: bool = True
    active_users: int | None = None
    thread_count: int | None = None

    @field_validator("code")
    @classmethod
    def _normalize_code(cls, value: str) -> str:
        code = value.strip().strip("/").strip()
        if not code:
            raise ValueError("board code must not be empty")
        return code

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str | None) -> str | None:
        return value.strip() if value is not None else None


class MediaRef(BaseModel):
    """添付ファイルへの参照.

    ``file_path`` / ``thumb_path`` はサーバー側が明示的なパスを返すエンジン
    (Lynxchanなど) の場合のみ設定される。
    """

    model_config = ConfigDict(frozen=True)

    media_key: str
    extension: str
    fpath_hint: int | None = None
    mime_hint: str | None = None
    file_path: str | None = None
    thumb_path: str | None = None


class Thread(BaseModel):
    """カタログ上のスレッド (OPのみ)."""

    model_config = ConfigDict(frozen=True)

    no: int
    subject: str | None = None
    body: str | None = None
    reply_count: int | None = None
    image_count: int | None = None
    timestamp: int | None = None  # アーカイブ取得時のみ
    media_refs: list[MediaRef] = Field(default_factory=list)


class Post(BaseModel):
    """スレッド内の投稿."""

    model_config = ConfigDict(frozen=True)

    no: int
    thread_no: int
    timestamp: int = 0
    author: str | None = None
    subject: str | None = None
    body: str | None = None
    media_refs: list[MediaRef] = Field(default_factory=list)


class MediaURLs(BaseModel):
    """解決済みのメディアURL."""

    model_config = ConfigDict(frozen=True)

    full_url: str | None = None
    thumb_url: str | None = None
    mime_hint: str | None = None
    full_candidates: list[str] = Field(default_factory=list)
    thumb_candidates: list[str] = Field(default_factory=list)

    @property
    def has_media(self) -> bool:
        return self.full_url is not None or self.thumb_url is not None


class SearchHit(BaseModel):
    """横断検索の結果."""

    model_config = ConfigDict(frozen=True)

    board: str
    thread_no: int
    subject: str | None = None
    snippet: str = ""


class FetchResponse(BaseModel):
    """HTTPレスポンス (ステータスと本文)."""

    model_config = ConfigDict(frozen=True)

    url: str
    status: int
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class ResultKind(str, Enum):
    """取得結果の種類."""

    BOARDS = "boards"
    CATALOG = "catalog"
    THREAD = "thread"
    ARCHIVE = "archive"
    SEARCH = "search"


class FetchResult(BaseModel):
    """1回の取得処理の結果 (エクスポート単位)."""

    model_config = ConfigDict(frozen=True)

    site: str
    kind: ResultKind
    fetched_at: datetime
    board: str | None = None
    thread_no: int | None = None
    boards: list[Board] = Field(default_factory=list)
    threads: list[Thread] = Field(default_factory=list)
    posts: list[Post] = Field(default_factory=list)
    hits: list[SearchHit] = Field(default_factory=list)
    media: dict[int, MediaURLs] = Field(default_factory=dict)  # 投稿番号 → URL
    replies: dict[int, list[int]] = Field(default_factory=dict)
    error: str | None = None

    @property
    def item_count(self) -> int:
        return len(self.boards) + len(self.threads) + len(self.posts) + len(self.hits)
