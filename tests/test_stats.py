import time
from datetime import datetime, timedelta

import pytest

from core.parser import LogRecord
from stats.cache import StatsCache
from stats.clients import share_percent
from stats.factory import QueryKind, StatsFactory
from stats.overall import OverallStats

SITE = 'ab12'


def record(ip, url='/', ts=None, pageview=1, status=200, browser='Chrome'):
    return LogRecord(
        ip=ip, timestamp=int(time.time()) if ts is None else ts, method='GET', url=url,
        status=status, bytes_sent=1000, referer='-', user_browser=browser,
        domestic_location='Beijing', global_location='China', pageview_flag=pageview,
    )


@pytest.fixture
def populated(store):
    rows = [record(f'8.8.1.{i}', '/a') for i in range(10)]
    rows += [record(f'8.8.2.{i}', '/b') for i in range(5)]
    rows += [record(f'8.8.3.{i}', '/c', browser='Firefox') for i in range(5)]
    rows.append(record('8.8.9.9', '/static/app.js', pageview=0))
    store.insert_batch(SITE, rows)
    return store


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def counting(factory, kind):
    manager = factory.managers[kind]
    calls = []
    original = manager.query

    def wrapped(site_id, params):
        calls.append(params)
        return original(site_id, params)

    manager.query = wrapped
    return calls


def test_top_urls_ordered_with_percentages(populated):
    factory = StatsFactory(populated)
    result = factory.query(QueryKind.URL, SITE, {'timeRange': 'week', 'limit': 10})

    assert result.key[0] == '/a'
    assert set(result.key[1:]) == {'/b', '/c'}
    assert result.uv == [10, 5, 5]
    assert result.uv_percent[0] == 50
    assert abs(sum(result.pv_percent) - 100) <= len(result.key)
    assert abs(sum(result.uv_percent) - 100) <= len(result.key)


def test_top_n_limit_and_dimension(populated):
    factory = StatsFactory(populated)
    result = factory.query(QueryKind.BROWSER, SITE, {'timeRange': 'week', 'limit': 1})
    assert result.key == ['Chrome']
    assert result.pv == [15]

    location = factory.query(QueryKind.LOCATION, SITE,
                             {'timeRange': 'week', 'limit': 5, 'locationType': 'global'})
    assert location.key == ['China']


def test_share_percent_rounds_half_up():
    assert share_percent([1, 1]) == [50, 50]
    assert share_percent([1, 2]) == [33, 67]
    assert share_percent([1, 7]) == [13, 88]
    assert share_percent([0, 0]) == []


def test_overall(populated):
    result = StatsFactory(populated).query('overall', SITE, {'timeRange': 'week'})
    assert result == OverallStats(pv=20, uv=20, traffic=20000)


def test_cache_hit_and_expiry(populated):
    clock = FakeClock()
    factory = StatsFactory(populated, expiry=300, cache=StatsCache(clock=clock))
    calls = counting(factory, QueryKind.URL)
    params = {'timeRange': 'week', 'limit': 10}

    first = factory.query(QueryKind.URL, SITE, params)
    clock.now = 100
    second = factory.query(QueryKind.URL, SITE, dict(params))
    assert second is first
    assert len(calls) == 1

    clock.now = 301
    factory.query(QueryKind.URL, SITE, params)
    assert len(calls) == 2


def test_cache_key_is_canonical():
    key = StatsCache.build_key('url', SITE, {'limit': 5, 'timeRange': 'today'})
    assert key == StatsCache.build_key('url', SITE, {'timeRange': 'today', 'limit': 5})
    assert key != StatsCache.build_key('referer', SITE, {'limit': 5, 'timeRange': 'today'})
    assert key != StatsCache.build_key('url', 'cd34', {'limit': 5, 'timeRange': 'today'})


def test_different_params_are_different_keys(populated):
    factory = StatsFactory(populated)
    calls = counting(factory, QueryKind.URL)
    factory.query(QueryKind.URL, SITE, {'timeRange': 'week', 'limit': 10})
    factory.query(QueryKind.URL, SITE, {'timeRange': 'week', 'limit': 2})
    assert len(calls) == 2


def test_empty_overall_is_never_cached(store):
    factory = StatsFactory(store)
    calls = counting(factory, QueryKind.OVERALL)

    assert factory.query(QueryKind.OVERALL, SITE, {'timeRange': 'today'}).is_empty()
    factory.query(QueryKind.OVERALL, SITE, {'timeRange': 'today'})
    assert len(calls) == 2
    assert len(factory.cache) == 0


def test_timeseries_daily(populated):
    result = StatsFactory(populated).query(QueryKind.TIMESERIES, SITE,
                                           {'timeRange': 'week', 'viewType': 'daily'})
    assert len(result.labels) == 7
    assert result.pageviews[-1] == 20
    assert result.visitors[-1] == 20
    assert sum(result.pageviews[:-1]) == 0


def test_timeseries_hourly_buckets(store):
    result = StatsFactory(store).query(QueryKind.TIMESERIES, SITE,
                                       {'timeRange': 'yesterday', 'viewType': 'hourly'})
    assert len(result.labels) in (23, 24, 25)
    assert result.labels[0] == '00:00'
    assert set(result.pageviews) == {0}


def test_logs_listing(populated):
    factory = StatsFactory(populated, logs_max_page_size=1000)
    page = factory.query(QueryKind.LOGS, SITE, {
        'page': 2, 'pageSize': 5, 'sortField': 'ip', 'sortOrder': 'asc',
    })
    assert page.pagination == {'total': 21, 'page': 2, 'pageSize': 5, 'pages': 5}
    assert [e['ip'] for e in page.logs] == ['8.8.1.5', '8.8.1.6', '8.8.1.7', '8.8.1.8', '8.8.1.9']
    assert page.logs[0]['pageview_flag'] is True

    filtered = factory.query(QueryKind.LOGS, SITE, {
        'page': 1, 'pageSize': 50, 'sortField': 'timestamp', 'sortOrder': 'desc', 'filter': 'app.js',
    })
    assert filtered.pagination['total'] == 1
    assert filtered.logs[0]['url'] == '/static/app.js'


def test_logs_unsafe_sort_and_page_cap(populated):
    page = StatsFactory(populated).query(QueryKind.LOGS, SITE, {
        'page': 1, 'pageSize': 5000, 'sortField': 'ip; DROP TABLE x', 'sortOrder': 'desc',
    })
    assert page.pagination['pageSize'] == 1000
    assert len(page.logs) == 21


def test_build_query_validation(store):
    factory = StatsFactory(store)
    kind, site_id, params = factory.build_query('url', {'id': SITE, 'timeRange': 'today', 'limit': '5'})
    assert kind is QueryKind.URL
    assert site_id == SITE
    assert params == {'timeRange': 'today', 'limit': 5}

    _, _, params = factory.build_query('logs', {
        'id': SITE, 'page': '1', 'pageSize': '10', 'sortField': 'url', 'sortOrder': 'asc', 'filter': 'x',
    })
    assert params['filter'] == 'x'

    with pytest.raises(ValueError):
        factory.build_query('nope', {'id': SITE})
    with pytest.raises(ValueError):
        factory.build_query('url', {'timeRange': 'today', 'limit': '5'})
    with pytest.raises(ValueError):
        factory.build_query('url', {'id': SITE, 'timeRange': 'today', 'limit': '0'})
    with pytest.raises(ValueError):
        factory.build_query('logs', {
            'id': SITE, 'page': '1', 'pageSize': '10', 'sortField': 'url', 'sortOrder': 'sideways',
        })
    with pytest.raises(ValueError):
        factory.build_query('timeseries', {'id': SITE, 'timeRange': 'decade', 'viewType': 'daily'})


def test_security_kinds(store):
    store.record_suspicious_access(SITE, '203.0.113.5', 'admin', 'admin probe', 100)
    result = StatsFactory(store).query(QueryKind.SUSPICIOUS, SITE, {})
    assert result.ips[0]['ip'] == '203.0.113.5'
    assert result.ips[0]['reason_name'] == 'admin probe'
    assert result.ips[0]['is_blocked'] is False

    spiders = StatsFactory(store).query(QueryKind.SPIDERS, SITE, {'timeRange': 'week'})
    assert spiders.spiders == []
    assert spiders.total_visits == 0


def test_logs_filter_is_literal(store):
    store.insert_batch(SITE, [
        record('8.8.1.1', '/sale/50%off'),
        record('8.8.1.2', '/a_b'),
        record('8.8.1.3', '/axb'),
        record('8.8.1.4', '/dir\\file'),
    ])
    factory = StatsFactory(store)

    def urls(search):
        page = factory.query(QueryKind.LOGS, SITE, {
            'page': 1, 'pageSize': 50, 'sortField': 'url', 'sortOrder': 'asc', 'filter': search,
        })
        return [e['url'] for e in page.logs]

    assert urls('a_b') == ['/a_b']
    assert urls('%') == ['/sale/50%off']
    assert urls('\\') == ['/dir\\file']
    assert urls('x') == ['/axb']


@pytest.fixture
def new_york(monkeypatch):
    monkeypatch.setenv('TZ', 'America/New_York')
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


def test_timeseries_daily_across_dst_change(store, new_york, monkeypatch):
    # в марте 2024 года переход на летнее время был 10 числа
    start, end = datetime(2024, 3, 1), datetime(2024, 3, 31)
    monkeypatch.setattr('stats.timeseries.time_period', lambda time_range: (start, end))

    rows = []
    day = start
    while day < end:
        for hour, minute in ((0, 30), (23, 30)):
            ts = int(day.replace(hour=hour, minute=minute).timestamp())
            rows.append(record(f'8.8.{day.day}.{hour}', ts=ts))
        day += timedelta(days=1)
    store.insert_batch(SITE, rows)

    result = StatsFactory(store).query(QueryKind.TIMESERIES, SITE, {'timeRange': 'month', 'viewType': 'daily'})
    assert result.labels[0] == '2024-03-01'
    assert result.labels[-1] == '2024-03-30'
    assert result.pageviews == [2] * 30
    assert result.visitors == [2] * 30
