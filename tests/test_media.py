"""
メディアURL解決のテスト
"""
import pytest

from chanscraper.models.data_models import (
    EngineKind,
    FetchResponse,
    MediaRef,
    Post,
    Thread,
)
from chanscraper.scraper.errors import ExhaustedError, NetworkError
from chanscraper.scraper.media import (
    fetch_media,
    mirror_candidates,
    resolve,
    resolve_all,
    resolve_item,
    resolve_ref,
)
from chanscraper.utils.text import normalize_extension


class TestResolve:
    """エンジン別URL解決のテストクラス"""

    def test_deterministic(self):
        """同じ入力には常に同じURLを返す"""
        first = resolve(EngineKind.EIGHTKUN, 'https://8kun.top/', 'v', '123456', 'png', 1)
        second = resolve(EngineKind.EIGHTKUN, 'https://8kun.top/', 'v', '123456', 'png', 1)
        assert first == second

    def test_kun_fpath_switch(self):
        """fpathによって保存レイアウトが切り替わる"""
        flat = resolve(EngineKind.EIGHTKUN, 'https://8kun.top/', 'v', '123456', 'png', 1)
        per_board = resolve(EngineKind.EIGHTKUN, 'https://8kun.top/', 'v', '123456', 'png', 0)

        assert flat.full_url == 'https://nerv.8kun.top/file_store/123456.png'
        assert flat.thumb_url == 'https://nerv.8kun.top/file_store/thumb/123456.png'
        assert per_board.full_url == 'https://nerv.8kun.top/v/src/123456.png'
        assert per_board.thumb_url == 'https://nerv.8kun.top/v/thumb/123456.png'

    def test_kun_default_fpath_is_flat(self):
        """fpath未指定はフラットなfile_store"""
        urls = resolve(EngineKind.EIGHTKUN, 'https://8kun.top/', 'v', 'abc', 'webm')
        assert urls.full_url == 'https://nerv.8kun.top/file_store/abc.webm'
        assert urls.thumb_url == 'https://nerv.8kun.top/file_store/thumb/abc.jpg'

    def test_kun_spoiler(self):
        """スポイラー指定ではフル・サムネイルとも固定画像"""
        urls = resolve(EngineKind.EIGHTKUN, 'https://8kun.top/', 'v', '123456', 'png', 1, spoiler=True)
        assert urls.full_url == 'https://nerv.8kun.top/static/assets/v/spoiler.png'
        assert urls.thumb_url == urls.full_url

    def test_fourchan(self):
        """4chanはi.4cdn.orgのURL"""
        urls = resolve(EngineKind.FOURCHAN, 'https://boards.4chan.org/', 'g', '222', '.PNG')
        assert urls.full_url == 'https://i.4cdn.org/g/222.png'
        assert urls.thumb_url == 'https://i.4cdn.org/g/222s.jpg'

    def test_sevenchan_keeps_thumb_extension(self):
        """7chanは画像拡張子ならサムネイルにも同じ拡張子を使う"""
        gif = resolve(EngineKind.SEVENCHAN, 'https://www.7chan.org/', 'b', '99', 'gif')
        webm = resolve(EngineKind.SEVENCHAN, 'https://www.7chan.org/', 'b', '99', 'webm')

        assert gif.full_url == 'https://7chan.org/b/src/99.gif'
        assert gif.thumb_url == 'https://7chan.org/b/thumb/99s.gif'
        assert webm.thumb_url == 'https://7chan.org/b/thumb/99s.jpg'

    def test_generic_vichan(self):
        """汎用vichanはサイトのベースURLを使い、サムネイルはjpg固定"""
        urls = resolve(EngineKind.VICHAN, 'https://example.org', 'tech', '555', 'png')
        assert urls.full_url == 'https://example.org/tech/src/555.png'
        assert urls.thumb_url == 'https://example.org/tech/thumb/555s.jpg'

    @pytest.mark.parametrize('extension', ['', '   ', None, '.', 'p/ng'])
    def test_unusable_extension(self, extension):
        """拡張子が空や不正ならメディアなし"""
        urls = resolve(EngineKind.FOURCHAN, 'https://boards.4chan.org/', 'g', '222', extension)
        assert not urls.has_media

    def test_missing_key(self):
        """メディアキーがなければメディアなし"""
        assert not resolve(EngineKind.FOURCHAN, 'https://boards.4chan.org/', 'g', None, 'png').has_media


class TestNormalizeExtension:
    """拡張子正規化のテストクラス"""

    @pytest.mark.parametrize('raw', ['png', '.png', 'PNG', '.PnG', ' .png '])
    def test_variants(self, raw):
        assert normalize_extension(raw) == 'png'

    def test_blank(self):
        assert normalize_extension('   ') == ''
        assert normalize_extension(None) == ''


class TestResolveRef:
    """MediaRefからの解決のテストクラス"""

    def test_structured_path(self, sites):
        """明示パスはサイトのベースURLに対して解決する"""
        ref = MediaRef(
            media_key='abc',
            extension='jpg',
            file_path='/.media/abc.jpg',
            thumb_path='/.media/t_abc',
            mime_hint='image/jpeg',
        )
        urls = resolve_ref(sites('endchan'), 'ausneets', ref)

        assert urls.full_url == 'https://endchan.net/.media/abc.jpg'
        assert urls.thumb_url == 'https://endchan.net/.media/t_abc'
        assert urls.mime_hint == 'image/jpeg'

    def test_structured_kun_spoiler_uses_spoiler_image(self, sites):
        """8kunでスポイラー指定なら明示パスより固定画像を優先"""
        ref = MediaRef(
            media_key='abc', extension='jpg', file_path='/x/abc.jpg', thumb_path='/x/t_abc.jpg'
        )
        urls = resolve_ref(sites('8kun'), 'v', ref, prefer_spoiler=True)
        assert urls.full_url == 'https://nerv.8kun.top/static/assets/v/spoiler.png'

    def test_resolve_item_first_media(self, sites):
        """先頭のメディアを解決"""
        thread = Thread(
            no=1,
            media_refs=[MediaRef(media_key='1', extension='png'), MediaRef(media_key='2', extension='jpg')],
        )
        urls = resolve_item(sites('4chan'), 'g', thread)
        assert urls.full_url == 'https://i.4cdn.org/g/1.png'

    def test_resolve_item_without_media(self, sites):
        """メディアがなければ空の結果"""
        post = Post(no=1, thread_no=1)
        assert not resolve_item(sites('4chan'), 'g', post).has_media

    def test_resolve_all_deduplicates(self, sites):
        """同じフルURLは1件にまとめる"""
        post = Post(
            no=1,
            thread_no=1,
            media_refs=[
                MediaRef(media_key='1', extension='png'),
                MediaRef(media_key='1', extension='.PNG'),
                MediaRef(media_key='2', extension='gif'),
            ],
        )
        urls = resolve_all(sites('4chan'), 'g', post)
        assert [u.full_url for u in urls] == [
            'https://i.4cdn.org/g/1.png',
            'https://i.4cdn.org/g/2.gif',
        ]


class TestMirrors:
    """ミラー候補のテストクラス"""

    def test_mirror_candidates(self):
        """ミラーホストのURLは元URLの後に並ぶ"""
        url = 'https://nerv.8kun.top/file_store/a.png'
        candidates = mirror_candidates(url, ['nerv.8kun.top', 'media.128ducks.com'])
        assert candidates == [url, 'https://media.128ducks.com/file_store/a.png']

    def test_unrelated_host(self):
        """ミラー対象外のホストはそのまま"""
        url = 'https://i.4cdn.org/g/1.png'
        assert mirror_candidates(url, ['nerv.8kun.top', 'media.128ducks.com']) == [url]

    @pytest.mark.asyncio
    async def test_fetch_media_falls_back(self, web):
        """最初の候補が失敗したら次の候補を試す"""
        web.routes['https://b.example/a.png'] = b'\x89PNG'
        web.routes['https://a.example/a.png'] = NetworkError('https://a.example/a.png', 'timeout')

        response = await fetch_media(web.fetch, ['https://a.example/a.png', 'https://b.example/a.png'])

        assert isinstance(response, FetchResponse)
        assert response.body == b'\x89PNG'
        assert web.requests[0][1].startswith('image/')

    @pytest.mark.asyncio
    async def test_fetch_media_exhausted(self, web):
        """全候補が失敗したらExhaustedError"""
        with pytest.raises(ExhaustedError):
            await fetch_media(web.fetch, ['https://a.example/a.png'])
