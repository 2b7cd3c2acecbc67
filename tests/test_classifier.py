import pytest

from core.classifier import RequestClassifier
from core.spider import SpiderDetector, spider_list
from core.suspicious import SuspiciousDetector, reason_list
from core.user_agent import UserAgentAnalyzer

CHROME = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0 Safari/537.36'


@pytest.fixture
def classifier():
    return RequestClassifier(
        status_code_include=[200],
        exclude_patterns=[r'\.(?:js|css|png)$', r'^/api/'],
        exclude_ips=['198.51.100.9'],
    )


def test_googlebot_by_ip_and_agent(classifier):
    result = classifier.classify('66.249.64.1', '/anything', 'GET', 'Googlebot/2.1', 200)
    assert result.is_spider
    assert result.spider_type == 'Googlebot'
    assert not result.is_suspicious
    assert not result.is_pageview


def test_spider_by_user_agent_only():
    is_spider, spider_type, name = SpiderDetector().detect(
        '8.8.4.4', 'Mozilla/5.0 (compatible; bingbot/2.0; +http://www.bing.com/bingbot.htm)'
    )
    assert is_spider
    assert spider_type == 'Bingbot'
    assert name == 'Bing'


def test_regular_browser_is_not_spider():
    assert SpiderDetector().detect('8.8.4.4', CHROME) == (False, 'unknown', 'unknown')


def test_spider_is_never_suspicious(classifier):
    flagged = classifier.detect_suspicious('66.249.64.1', '/wp-admin/install.php', 'GET', 'Googlebot/2.1', 403)
    assert flagged == (False, '', '')


def test_admin_path(classifier):
    result = classifier.classify('8.8.4.4', '/wp-admin/install.php', 'GET', CHROME, 404)
    assert result.is_suspicious
    assert result.suspicious_type == 'admin'
    assert result.suspicious_reason == 'admin probe'


def test_forbidden_status_always_suspicious(classifier):
    result = classifier.classify('8.8.4.4', '/plain/page', 'GET', CHROME, 403)
    assert result.is_suspicious
    assert result.suspicious_reason == 'rate-limit/forbidden'

    result = classifier.classify('8.8.4.4', '/plain/page', 'GET', CHROME, 429)
    assert result.suspicious_type == 'status_429'


@pytest.mark.parametrize('url, reason_type', [
    ('/search?q=1 union select password from users', 'sql_injection'),
    ('/comment?text=<script>alert(1)</script>', 'xss'),
    ('/.env', 'path_scan'),
])
def test_reason_families(url, reason_type):
    flagged, found_type, _ = SuspiciousDetector().detect_path(url)
    assert flagged
    assert found_type == reason_type


def test_pageview_rules(classifier):
    assert classifier.should_count_as_pageview(200, '/post/1', '8.8.4.4')
    assert not classifier.should_count_as_pageview(404, '/post/1', '8.8.4.4')
    assert not classifier.should_count_as_pageview(200, '/static/app.js', '8.8.4.4')
    assert not classifier.should_count_as_pageview(200, '/api/items', '8.8.4.4')
    assert not classifier.should_count_as_pageview(200, '/post/1', '198.51.100.9')


def test_invalid_exclude_pattern_is_skipped():
    classifier = RequestClassifier(exclude_patterns=['(unclosed', r'\.css$'])
    assert len(classifier.exclude_patterns) == 1


def test_user_agent_parsing():
    ua = UserAgentAnalyzer.parse_user_agent(CHROME)
    assert ua == {'browser': 'Chrome', 'os': 'Windows', 'device': 'Desktop'}
    assert UserAgentAnalyzer.parse_user_agent('-')['browser'] == 'Unknown'


def test_reference_lists():
    assert {'type': 'Googlebot', 'name': 'Google'} in spider_list()
    assert 'admin' in {r['type'] for r in reason_list()}
