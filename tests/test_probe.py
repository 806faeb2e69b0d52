"""
候補エンドポイントの順次試行のテスト
"""
import pytest

from chanscraper.scraper.decoders import decode_catalog
from chanscraper.scraper.errors import (
    ChallengeBlockedError,
    ExhaustedError,
    NetworkError,
    NotFoundError,
)
from chanscraper.scraper.html_scrapers import scrape_catalog_html
from chanscraper.scraper.probe import (
    ACCEPT_HTML,
    ACCEPT_JSON,
    Candidate,
    CandidateKind,
    EndpointProber,
)
from chanscraper.scraper.sevenchan import has_useful_content

USEFUL_HTML = """
<div class="thread" id="thread_42_b"><div id="p42">
<span class="subject">Real thread</span><p class="message">body</p></div></div>
"""


def scrape_b(html):
    return scrape_catalog_html(html, 'b')


class TestEndpointProber:
    """EndpointProberのテストクラス"""

    @pytest.mark.asyncio
    async def test_first_success_wins(self, web):
        """最初に成功した候補の結果を返し、以降は試さない"""
        web.routes['https://x.org/a.json'] = [{'no': 1, 'sub': 'a'}]
        web.routes['https://x.org/b.json'] = [{'no': 2, 'sub': 'b'}]
        prober = EndpointProber(web.fetch, 'catalog', 'https://x.org/b/')

        threads = await prober.run([
            Candidate('https://x.org/a.json', decode_catalog),
            Candidate('https://x.org/b.json', decode_catalog),
        ])

        assert [t.no for t in threads] == [1]
        assert web.urls == ['https://x.org/a.json']
        assert web.requests[0][1] == ACCEPT_JSON

    @pytest.mark.asyncio
    async def test_advances_past_failures(self, web):
        """通信エラー・非2xx・デコード失敗では次の候補へ進む"""
        web.routes['https://x.org/1.json'] = NetworkError('https://x.org/1.json', 'timeout')
        web.routes['https://x.org/2.json'] = (500, 'oops')
        web.routes['https://x.org/3.json'] = {'unexpected': True}
        web.routes['https://x.org/4.json'] = 'not json'
        web.routes['https://x.org/5.json'] = [{'no': 5}]
        prober = EndpointProber(web.fetch, 'catalog', 'https://x.org/b/')

        threads = await prober.run([
            Candidate(f'https://x.org/{i}.json', decode_catalog) for i in range(1, 6)
        ])

        assert [t.no for t in threads] == [5]
        assert len(web.requests) == 5

    @pytest.mark.asyncio
    async def test_malformed_numbers_advance(self, web):
        """番号が壊れたペイロードも一致なしとして次の候補へ進む"""
        web.routes['https://x.org/1.json'] = [{'no': '--5'}]
        web.routes['https://x.org/2.json'] = [{'no': 6}]
        prober = EndpointProber(web.fetch, 'catalog', 'https://x.org/b/')

        threads = await prober.run([
            Candidate('https://x.org/1.json', decode_catalog),
            Candidate('https://x.org/2.json', decode_catalog),
        ])

        assert [t.no for t in threads] == [6]

    @pytest.mark.asyncio
    async def test_usefulness_short_circuits_to_html(self, web):
        """中身のないJSONを受け取ったら残りのJSON候補を飛ばしてHTMLへ"""
        web.routes['https://x.org/b/catalog.json'] = [{'no': 1}, {'no': 2, 'sub': '  '}]
        web.routes['https://x.org/b/threads.json'] = [{'no': 9, 'sub': 'should not be used'}]
        web.routes['https://x.org/b/catalog.html'] = USEFUL_HTML
        prober = EndpointProber(web.fetch, 'catalog', 'https://x.org/b/', has_useful_content)

        threads = await prober.run([
            Candidate('https://x.org/b/catalog.json', decode_catalog),
            Candidate('https://x.org/b/threads.json', decode_catalog),
            Candidate('https://x.org/b/catalog.html', scrape_b, kind=CandidateKind.HTML),
        ])

        assert [t.no for t in threads] == [42]
        assert threads[0].subject == 'Real thread'
        assert 'https://x.org/b/threads.json' not in web.urls
        assert web.requests[-1][1] == ACCEPT_HTML

    @pytest.mark.asyncio
    async def test_useless_html_kept_as_fallback(self, web):
        """HTMLの結果も中身がなければ最後の手段として返す"""
        web.routes['https://x.org/b/catalog.html'] = '<div class="thread" id="thread_7_b"><div id="p7"></div></div>'
        prober = EndpointProber(web.fetch, 'catalog', 'https://x.org/b/', has_useful_content)

        threads = await prober.run([
            Candidate('https://x.org/b/catalog.html', scrape_b, kind=CandidateKind.HTML),
            Candidate('https://x.org/b/', scrape_b, kind=CandidateKind.HTML),
        ])

        assert [t.no for t in threads] == [7]

    @pytest.mark.asyncio
    async def test_all_404_is_not_found(self, web):
        """全候補が404ならNotFoundError"""
        prober = EndpointProber(web.fetch, 'thread /b/1', 'https://x.org/b/res/1.html')

        with pytest.raises(NotFoundError):
            await prober.run([
                Candidate('https://x.org/b/res/1.json', decode_catalog),
                Candidate('https://x.org/api/b/thread/1.json', decode_catalog),
            ])

    @pytest.mark.asyncio
    async def test_mixed_failures_are_exhausted(self, web):
        """404以外の失敗が混ざればExhaustedError"""
        web.routes['https://x.org/2.json'] = NetworkError('https://x.org/2.json', 'timeout')
        prober = EndpointProber(web.fetch, 'catalog', 'https://x.org/b/')

        with pytest.raises(ExhaustedError) as exc_info:
            await prober.run([
                Candidate('https://x.org/1.json', decode_catalog),
                Candidate('https://x.org/2.json', decode_catalog),
            ])

        assert 'timeout' in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_html_challenge_raises_immediately(self, web, challenge_html):
        """HTML候補がチャレンジページなら即座にChallengeBlockedError"""
        web.routes['https://x.org/b/catalog.html'] = challenge_html
        web.routes['https://x.org/b/'] = USEFUL_HTML
        prober = EndpointProber(web.fetch, 'catalog', 'https://x.org/b/')

        with pytest.raises(ChallengeBlockedError) as exc_info:
            await prober.run([
                Candidate('https://x.org/b/catalog.html', scrape_b, kind=CandidateKind.HTML),
                Candidate('https://x.org/b/', scrape_b, kind=CandidateKind.HTML),
            ])

        assert exc_info.value.remediation_url == 'https://x.org/b/'
        assert web.urls == ['https://x.org/b/catalog.html']

    @pytest.mark.asyncio
    async def test_json_challenge_reported_at_exhaustion(self, web, challenge_html):
        """JSON候補へのチャレンジページは全候補失敗時にChallengeBlockedError"""
        web.routes['https://x.org/b/catalog.json'] = challenge_html
        prober = EndpointProber(web.fetch, 'catalog', 'https://x.org/b/')

        with pytest.raises(ChallengeBlockedError):
            await prober.run([
                Candidate('https://x.org/b/catalog.json', decode_catalog),
                Candidate('https://x.org/b/threads.json', decode_catalog),
            ])

        assert len(web.requests) == 2

    @pytest.mark.asyncio
    async def test_expand_runs_after_accept(self, web):
        """受理した候補のみ追加取得する"""
        web.routes['https://x.org/1.json'] = [{'no': 1}]

        async def expand(payload, threads):
            return threads + [threads[0].model_copy(update={'no': 2})]

        prober = EndpointProber(web.fetch, 'catalog', 'https://x.org/b/')
        threads = await prober.run([Candidate('https://x.org/1.json', decode_catalog, expand=expand)])

        assert [t.no for t in threads] == [1, 2]
