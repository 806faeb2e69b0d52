"""取得処理の例外定義."""

from __future__ import annotations


class ChanScraperError(Exception):
    """取得処理の基底例外"""


class NetworkError(ChanScraperError):
    """通信レベルの失敗 (タイムアウト・DNS・TLSなど)"""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Network error for {url}: {reason}")
        self.url = url
        self.reason = reason


class NotFoundError(ChanScraperError):
    """リソースが存在しない (HTTP 404)"""

    def __init__(self, what: str) -> None:
        super().__init__(f"{what} not found")
        self.what = what


class ChallengeBlockedError(ChanScraperError):
    """アンチボットのチャレンジページに阻まれた"""

    def __init__(self, remediation_url: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Anti-bot challenge is blocking {remediation_url}"
        )
        self.remediation_url = remediation_url


class ExhaustedError(ChanScraperError):
    """全ての候補エンドポイントが失敗した"""

    def __init__(self, what: str, last_error: str | None = None) -> None:
        message = f"All {what} endpoints failed"
        if last_error:
            message = f"{message}: {last_error}"
        super().__init__(message)
        self.what = what
        self.last_error = last_error
