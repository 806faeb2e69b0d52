"""サイトとエンジン種別の静的レジストリ."""

from __future__ import annotations

from collections.abc import Callable

from loguru import logger

from ..models.data_models import EngineKind, SiteDescriptor

SITES: tuple[SiteDescriptor, ...] = (
    SiteDescriptor(
        id="4chan",
        display_name="4chan",
        base_url="https://boards.4chan.org/",
        engine_kind=EngineKind.FOURCHAN,
    ),
    SiteDescriptor(
        id="endchan",
        display_name="Endchan",
        base_url="https://endchan.net/",
        engine_kind=EngineKind.LYNXCHAN,
    ),
    SiteDescriptor(
        id="kohlchan",
        display_name="Kohlchan",
        base_url="https://kohlchan.net/",
        engine_kind=EngineKind.LYNXCHAN,
    ),
    SiteDescriptor(
        id="8kun",
        display_name="8kun",
        base_url="https://8kun.top/",
        engine_kind=EngineKind.EIGHTKUN,
    ),
    SiteDescriptor(
        id="7chan",
        display_name="7chan",
        base_url="https://7chan.org/",
        engine_kind=EngineKind.SEVENCHAN,
    ),
)

DEFAULT_SITE_ID = "4chan"


class SiteDirectory:
    """サイト一覧と現在選択中のサイト

    選択状態の永続化は呼び出し側の責務で、``on_switch`` に通知する。
    """

    def __init__(
        self,
        current_id: str | None = None,
        on_switch: Callable[[SiteDescriptor], None] | None = None,
    ) -> None:
        self._sites: dict[str, SiteDescriptor] = {site.id: site for site in SITES}
        self._on_switch = on_switch
        if current_id is not None and current_id in self._sites:
            self._current = self._sites[current_id]
        else:
            if current_id is not None:
                logger.warning("Unknown saved site {}; using {}", current_id, DEFAULT_SITE_ID)
            self._current = self._sites[DEFAULT_SITE_ID]

    @property
    def all(self) -> list[SiteDescriptor]:
        return list(self._sites.values())

    @property
    def current(self) -> SiteDescriptor:
        return self._current

    def get(self, site_id: str) -> SiteDescriptor | None:
        return self._sites.get(site_id)

    def require(self, site_id: str) -> SiteDescriptor:
        """サイトを取得 (未知のIDはKeyError)"""
        site = self._sites.get(site_id)
        if site is None:
            raise KeyError(f"Unknown site: {site_id}")
        return site

    def switch_to(self, site_id: str) -> SiteDescriptor:
        """現在のサイトを切り替え"""
        site = self.require(site_id)
        if site == self._current:
            return site
        self._current = site
        logger.info("Switched current site to {}", site.id)
        if self._on_switch is not None:
            self._on_switch(site)
        return site
