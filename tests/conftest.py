"""
テスト共通のフィクスチャ
"""
import json

import pytest

from chanscraper.models.data_models import FetchResponse, SiteDescriptor
from chanscraper.scraper.directory import SiteDirectory
from chanscraper.scraper.probe import ACCEPT_JSON


class FakeWeb:
    """URLごとの応答を定義した疑似HTTP層

    値は本文 (dict/list/str/bytes)、(ステータス, 本文) のタプル、または送出する例外。
    未定義のURLは404を返す。
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.requests = []

    async def fetch(self, url, accept=ACCEPT_JSON):
        self.requests.append((url, accept))
        value = self.routes.get(url)
        if value is None:
            return FetchResponse(url=url, status=404, body=b'')
        if isinstance(value, Exception):
            raise value
        status, body = value if isinstance(value, tuple) else (200, value)
        if isinstance(body, (dict, list)):
            body = json.dumps(body).encode('utf-8')
        elif isinstance(body, str):
            body = body.encode('utf-8')
        return FetchResponse(url=url, status=status, body=body)

    @property
    def urls(self):
        return [url for url, _ in self.requests]


@pytest.fixture
def web():
    """空の疑似HTTP層"""
    return FakeWeb()


@pytest.fixture
def sites():
    """サイトIDからSiteDescriptorを引く関数"""
    directory = SiteDirectory()

    def get(site_id) -> SiteDescriptor:
        return directory.require(site_id)

    return get


@pytest.fixture
def challenge_html():
    """Cloudflareのチャレンジページ"""
    return (
        '<!DOCTYPE html><html><head><title>Just a moment...</title></head>'
        '<body><script>window._cf_chl_opt={cvId: "3"};</script></body></html>'
    )
