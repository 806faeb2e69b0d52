"""
CLIのテスト
"""
import json
from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from chanscraper.models.data_models import Thread
from chanscraper.scraper.errors import ChallengeBlockedError, ExhaustedError, NotFoundError
from chanscraper.scraper.manager import ScraperManager
from chanscraper.utils.cookies import CookieStore
from main import app, parse_cookie

runner = CliRunner()


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """一時ディレクトリで実行"""
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestCli:
    """CLIのテストクラス"""

    def test_list_sites(self, workdir):
        result = runner.invoke(app, ['--list-sites', '--verbose'])

        assert result.exit_code == 0
        assert '4chan' in result.output
        assert '7chan' in result.output

    def test_unknown_site(self, workdir):
        result = runner.invoke(app, ['--site', 'nosuchchan', '--board', 'b', '--verbose'])
        assert result.exit_code == 1

    def test_board_required(self, workdir):
        result = runner.invoke(app, ['--site', '4chan', '--verbose'])
        assert result.exit_code == 1

    def test_catalog_written_to_json(self, workdir):
        """カタログをJSONに出力"""
        fetch = AsyncMock(return_value=[Thread(no=1, subject='hello')])
        output = workdir / 'out.json'

        with patch.object(ScraperManager, 'fetch_catalog', fetch):
            result = runner.invoke(app, ['-s', '4chan', '-b', 'g', '-o', str(output), '-f', 'json', '-v'])

        assert result.exit_code == 0
        data = json.loads(output.read_text(encoding='utf-8'))
        assert data['results'][0]['threads'][0]['subject'] == 'hello'

    @pytest.mark.parametrize('error, code', [
        (NotFoundError('/g/ catalog'), 2),
        (ChallengeBlockedError('https://boards.4chan.org/g/'), 3),
        (ExhaustedError('/g/ catalog', 'HTTP 500'), 4),
    ])
    def test_exit_codes(self, workdir, error, code):
        """失敗の種類ごとの終了コード"""
        fetch = AsyncMock(side_effect=error)

        with patch.object(ScraperManager, 'fetch_catalog', fetch):
            result = runner.invoke(app, ['-s', '4chan', '-b', 'g', '-o', str(workdir / 'o.json'), '-v'])

        assert result.exit_code == code

    def test_cookie_option(self, workdir):
        """--cookie はサイトのドメインに保存"""
        store = CookieStore()
        fetch = AsyncMock(return_value=[])

        with patch('main.CookieStore', return_value=store), patch.object(ScraperManager, 'fetch_catalog', fetch):
            result = runner.invoke(
                app, ['-s', '7chan', '-b', 'b', '--cookie', 'cf_clearance=abc', '-o', str(workdir / 'o.json'), '-v']
            )

        assert result.exit_code == 0
        assert store.cookie_header('7chan.org') == 'cf_clearance=abc'

    def test_parse_cookie(self):
        assert parse_cookie('a = b=c') == ('a', 'b=c')
