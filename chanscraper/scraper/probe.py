"""候補エンドポイントを優先順に試す取得処理.

候補は必ず順番に一つずつ試す。JSONの結果が「形式上は正しいが中身がない」
と判定された場合は、残りのJSON候補を飛ばしてHTML候補へ進む。
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from loguru import logger

from ..models.data_models import FetchResponse
from ..utils.text import decode_html_bytes
from .errors import ChallengeBlockedError, ExhaustedError, NetworkError, NotFoundError
from .html_scrapers import is_challenge_page

T = TypeVar("T")

ACCEPT_JSON = "application/json, text/plain, */*"
ACCEPT_HTML = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"

FetchFunc = Callable[[str, str], Awaitable[FetchResponse]]


class CandidateKind(str, Enum):
    """候補の種類."""

    JSON = "json"
    HTML = "html"


@dataclass(frozen=True)
class Candidate(Generic[T]):
    """候補エンドポイント

    ``decode`` はJSONならパース済みツリー、HTMLならデコード済み文字列を受け取り、
    形が合わなければ ``None`` を返す。``expand`` は受理後に追加ページを取得して
    結果を広げる場合に使う。
    """

    url: str
    decode: Callable[[Any], list[T] | None]
    kind: CandidateKind = CandidateKind.JSON
    expand: Callable[[Any, list[T]], Awaitable[list[T]]] | None = None

    @property
    def accept(self) -> str:
        return ACCEPT_HTML if self.kind is CandidateKind.HTML else ACCEPT_JSON


def parse_json_payload(body: bytes) -> Any | None:
    """JSONとしてパース (失敗時はNone)"""
    try:
        return json.loads(body.decode("utf-8", errors="replace"))
    except (json.JSONDecodeError, ValueError):
        return None


class EndpointProber(Generic[T]):
    """候補リストを順に試して最初に有効な結果を返す"""

    def __init__(
        self,
        fetch: FetchFunc,
        what: str,
        remediation_url: str,
        is_useful: Callable[[list[T]], bool] | None = None,
    ) -> None:
        self.fetch = fetch
        self.what = what
        self.remediation_url = remediation_url
        self.is_useful = is_useful

    async def run(self, candidates: Sequence[Candidate[T]]) -> list[T]:
        """候補を順番に試行

        全て失敗した場合、全候補が404なら NotFoundError、チャレンジページを
        見たなら ChallengeBlockedError、それ以外は ExhaustedError を送出する。
        """
        statuses: list[int | None] = []
        challenge_seen = False
        last_error: str | None = None
        html_fallback: list[T] | None = None

        index = 0
        while index < len(candidates):
            candidate = candidates[index]
            index += 1
            logger.debug("Probing {} candidate {}", self.what, candidate.url)

            try:
                response = await self.fetch(candidate.url, candidate.accept)
            except NetworkError as e:
                statuses.append(None)
                last_error = str(e)
                continue

            statuses.append(response.status)
            if not response.ok:
                logger.warning("HTTP {} for {}", response.status, candidate.url)
                last_error = f"HTTP {response.status} for {candidate.url}"
                continue

            payload: Any
            if candidate.kind is CandidateKind.HTML:
                payload = decode_html_bytes(response.body)
                if is_challenge_page(payload):
                    logger.warning("Challenge page served for {}", candidate.url)
                    raise ChallengeBlockedError(
                        self.remediation_url,
                        f"Anti-bot challenge is blocking {self.what}",
                    )
            else:
                payload = parse_json_payload(response.body)
                if payload is None:
                    if is_challenge_page(decode_html_bytes(response.body)):
                        logger.warning("Challenge page served for {}", candidate.url)
                        challenge_seen = True
                    last_error = f"Invalid JSON from {candidate.url}"
                    continue

            records = candidate.decode(payload)
            if not records:
                last_error = f"No decoder matched {candidate.url}"
                continue

            if candidate.expand is not None:
                records = await candidate.expand(payload, records)

            if self.is_useful is not None and not self.is_useful(records):
                if candidate.kind is CandidateKind.JSON:
                    logger.info(
                        "{} JSON from {} has no usable content; switching to HTML",
                        self.what,
                        candidate.url,
                    )
                    index = self._next_html_index(candidates, index)
                else:
                    html_fallback = html_fallback or records
                last_error = f"No usable content from {candidate.url}"
                continue

            logger.info("Loaded {} {} records from {}", len(records), self.what, candidate.url)
            return records

        if html_fallback is not None:
            return html_fallback
        if challenge_seen:
            raise ChallengeBlockedError(
                self.remediation_url, f"Anti-bot challenge is blocking {self.what}"
            )
        if statuses and all(status == 404 for status in statuses):
            raise NotFoundError(self.what)
        logger.error("All {} endpoints failed: {}", self.what, last_error)
        raise ExhaustedError(self.what, last_error)

    @staticmethod
    def _next_html_index(candidates: Sequence[Candidate[T]], start: int) -> int:
        for i in range(start, len(candidates)):
            if candidates[i].kind is CandidateKind.HTML:
                return i
        return len(candidates)
