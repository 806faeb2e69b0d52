"""
JSONデコーダーのテスト
"""
import copy

import pytest

from chanscraper.models.data_models import Board
from chanscraper.scraper.decoders import (
    decode_boards,
    decode_catalog,
    decode_kun_board_search,
    decode_lynxchan_boards,
    decode_lynxchan_catalog,
    decode_thread,
)


class TestCatalogDecoders:
    """カタログデコーダーのテストクラス"""

    @pytest.fixture
    def flat_payload(self):
        """平坦なカタログ"""
        return [{'no': 111, 'sub': 'Hello', 'com': 'World', 'tim': 222, 'ext': '.png', 'replies': 3, 'images': 1}]

    def test_flat_catalog(self, flat_payload):
        """平坦な形式から1スレッドを得る"""
        threads = decode_catalog(flat_payload)

        assert len(threads) == 1
        thread = threads[0]
        assert thread.no == 111
        assert thread.subject == 'Hello'
        assert thread.body == 'World'
        assert thread.reply_count == 3
        assert thread.image_count == 1
        assert [(r.media_key, r.extension) for r in thread.media_refs] == [('222', 'png')]

    def test_idempotent(self, flat_payload):
        """同じペイロードは何度デコードしても同じ結果"""
        before = copy.deepcopy(flat_payload)
        assert decode_catalog(flat_payload) == decode_catalog(flat_payload)
        assert flat_payload == before

    def test_paged_catalog(self):
        """ページ単位の形式 (4chan/vichan)"""
        payload = [
            {'page': 1, 'threads': [{'no': 1, 'sub': 'a'}, {'no': 2, 'com': 'b'}]},
            {'page': 2, 'threads': [{'no': 3}, {'sub': 'no number'}]},
        ]
        threads = decode_catalog(payload)
        assert [t.no for t in threads] == [1, 2, 3]

    def test_extra_files(self):
        """追加ファイルもMediaRefになる"""
        payload = [{'no': 5, 'tim': '100', 'ext': '.jpg', 'extra_files': [{'tim': '101', 'ext': '.gif', 'fpath': 0}]}]
        refs = decode_catalog(payload)[0].media_refs
        assert [(r.media_key, r.extension, r.fpath_hint) for r in refs] == [
            ('100', 'jpg', None),
            ('101', 'gif', 0),
        ]

    def test_lynxchan_catalog_counts(self):
        """Lynxchanのカタログは省略数と表示中の投稿数から返信数を求める"""
        payload = {
            'threads': [
                {
                    'threadId': 10,
                    'subject': 'Sub',
                    'message': 'Msg',
                    'ommitedPosts': 4,
                    'posts': [{'postId': 11}, {'postId': 12}],
                    'omittedFiles': 2,
                    'files': [{'path': '/.media/abc.png', 'thumb': '/.media/t_abc', 'mime': 'image/png'}],
                }
            ]
        }
        threads = decode_lynxchan_catalog(payload)

        assert len(threads) == 1
        assert threads[0].reply_count == 6
        assert threads[0].image_count == 3
        ref = threads[0].media_refs[0]
        assert ref.media_key == 'abc'
        assert ref.extension == 'png'
        assert ref.file_path == '/.media/abc.png'

    def test_lynxchan_list(self):
        """サムネイルのみの一覧からフルパスを推定"""
        payload = [{'threadId': 7, 'subject': 's', 'thumb': '/.media/t_deadbeef.jpg'}]
        thread = decode_catalog(payload)[0]
        assert thread.no == 7
        assert thread.media_refs[0].file_path == '/.media/deadbeef.jpg'
        assert thread.media_refs[0].thumb_path == '/.media/t_deadbeef.jpg'

    @pytest.mark.parametrize('payload', [None, {}, [], 'text', [{'foo': 1}], {'threads': 'x'}])
    def test_no_match(self, payload):
        """形が合わなければNone"""
        assert decode_catalog(payload) is None

    def test_malformed_numbers(self):
        """数値として読めない番号のスレッドは読み飛ばす"""
        assert decode_catalog([{'no': '--5'}]) is None
        threads = decode_catalog([{'no': '²'}, {'no': '7', 'replies': '--1'}])
        assert [t.no for t in threads] == [7]


class TestThreadDecoders:
    """スレッドデコーダーのテストクラス"""

    def test_vichan_thread(self):
        """postsリスト形式"""
        payload = {'posts': [{'no': 1, 'time': 100, 'name': 'Anon', 'com': 'op'}, {'no': 2, 'com': 'reply'}]}
        posts = decode_thread(payload, 1)

        assert [p.no for p in posts] == [1, 2]
        assert posts[0].timestamp == 100
        assert posts[0].author == 'Anon'
        assert posts[1].timestamp == 0
        assert all(p.thread_no == 1 for p in posts)

    def test_lynxchan_thread(self):
        """OPにpostsがネストした形式"""
        payload = {
            'threadId': 50,
            'creation': '2024-01-01T00:00:00.000Z',
            'message': 'op',
            'posts': [{'postId': 51, 'creation': '2024-01-01T00:01:00Z', 'message': 'reply'}],
        }
        posts = decode_thread(payload, 50)

        assert [p.no for p in posts] == [50, 51]
        assert posts[0].timestamp == 1704067200
        assert posts[1].timestamp == 1704067260

    def test_no_match(self):
        assert decode_thread({'foo': 'bar'}, 1) is None
        assert decode_thread([], 1) is None

    def test_malformed_post_number(self):
        posts = decode_thread({'posts': [{'no': '--5'}, {'no': 2, 'time': '²'}]}, 1)
        assert [p.no for p in posts] == [2]
        assert posts[0].timestamp == 0


class TestBoardDecoders:
    """板一覧デコーダーのテストクラス"""

    def test_fourchan_boards(self):
        """ws_boardからis_sfwを決める"""
        payload = {
            'boards': [
                {'board': 'g', 'title': 'Technology', 'ws_board': 1, 'meta_description': ' tech '},
                {'board': 'b', 'title': 'Random', 'ws_board': 0},
                {'board': '', 'title': 'Empty'},
            ]
        }
        boards = decode_boards(payload)

        assert [b.code for b in boards] == ['g', 'b']
        assert boards[0].is_sfw is True
        assert boards[0].description == 'tech'
        assert boards[1].is_sfw is False

    def test_lynxchan_boards_page_count(self):
        """Lynxchanは板一覧と総ページ数を返す"""
        payload = {
            'status': 'ok',
            'data': {
                'pageCount': 3,
                'boards': [{'boardUri': 'ausneets', 'boardName': 'Aussie', 'boardDescription': 'd', 'uniqueIps': 1, 'threadCount': 9}],
            },
        }
        boards, pages = decode_lynxchan_boards(payload)
        assert pages == 3
        assert boards == [Board(code='ausneets', title='Aussie', description='d', thread_count=9)]

    def test_kun_board_search_offset(self):
        """残りがある場合は次のオフセットを返す"""
        payload = {
            'boards': {'pol': {'uri': 'pol', 'title': 'Politics', 'active': 50, 'tags': ['news', 'politics']}},
            'order': ['pol'],
            'omitted': 10,
            'search': {'page': 0},
        }
        boards, next_offset = decode_kun_board_search(payload)

        assert boards[0].code == 'pol'
        assert boards[0].active_users == 50
        assert boards[0].description == 'news politics'
        assert next_offset == 1

    def test_kun_board_search_last_page(self):
        """省略数がなければ次のオフセットはNone"""
        payload = {'boards': {'v': {'uri': 'v', 'title': 'Video'}}, 'order': ['v'], 'omitted': 0}
        boards, next_offset = decode_kun_board_search(payload)
        assert [b.code for b in boards] == ['v']
        assert next_offset is None
