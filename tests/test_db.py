import sqlite3

import pytest

from core.db import RecordStore, StoreInitError, table_name
from core.parser import LogRecord


def make_record(ts, ip='8.8.4.4', url='/'):
    return LogRecord(ip=ip, timestamp=ts, method='GET', url=url, status=200,
                     bytes_sent=100, referer='-', pageview_flag=1)


def test_table_name_validation():
    assert table_name('ab12') == 'ab12_nginx_logs'
    with pytest.raises(ValueError):
        table_name('x"; DROP TABLE t; --')


def test_connect_failure_is_fatal(tmp_path):
    blocker = tmp_path / 'file'
    blocker.write_text('')
    with pytest.raises(StoreInitError):
        RecordStore(blocker / 'sub' / 'store.db').connect()


def test_schema_is_idempotent(store):
    store.ensure_site_table('ab12')
    store.init_schema(['ab12'])
    assert store.site_tables() == ['ab12_nginx_logs']


def test_insert_batch_is_atomic(store):
    assert store.insert_batch('ab12', [make_record(1000 + i) for i in range(5)]) == 5
    assert store.count_rows('ab12') == 5

    broken = [make_record(2000), make_record(None)]
    with pytest.raises(sqlite3.Error):
        store.insert_batch('ab12', broken)
    assert store.count_rows('ab12') == 5


def test_suspicious_ledger_upsert(store):
    store.record_suspicious_access('ab12', '203.0.113.5', 'admin', 'admin probe', 100)
    store.record_suspicious_access('ab12', '203.0.113.5', 'xss', 'XSS attempt', 300)
    store.record_suspicious_access('ab12', '203.0.113.5', 'path_scan', 'path scan', 200)

    entry = store.get_suspicious_ip('ab12', '203.0.113.5')
    assert entry['access_count'] == 3
    assert entry['first_seen'] == 100
    assert entry['last_seen'] == 300
    assert entry['reason_type'] == 'admin'

    assert store.set_blocked('ab12', '203.0.113.5')
    assert store.get_suspicious_ip('ab12', '203.0.113.5')['is_blocked'] == 1
    assert not store.set_blocked('ab12', '198.51.100.1')


def test_suspicious_list_ordering(store):
    for _ in range(3):
        store.record_suspicious_access('ab12', '203.0.113.9', 'xss', 'XSS attempt', 10)
    store.record_suspicious_access('ab12', '203.0.113.1', 'xss', 'XSS attempt', 10)

    ips = [e['ip'] for e in store.get_suspicious_ips('ab12')]
    assert ips == ['203.0.113.9', '203.0.113.1']


def test_clean_old_logs(store):
    store.insert_batch('ab12', [make_record(100), make_record(200), make_record(5000)])
    deleted, errors = store.clean_old_logs(1000)
    assert deleted == 2
    assert errors == []
    assert store.count_rows('ab12') == 1


def test_spider_stats(store):
    records = []
    for i, ip in enumerate(['66.249.64.1', '66.249.64.1', '66.249.64.2']):
        r = make_record(1000 + i, ip=ip)
        r.is_spider, r.spider_type, r.spider_name = 1, 'Googlebot', 'Google'
        records.append(r)
    store.insert_batch('ab12', records)

    stats = store.get_spider_stats('ab12', since=0)
    assert len(stats) == 1
    assert stats[0]['visits'] == 3
    assert stats[0]['unique_ips'] == 2
    assert stats[0]['ips'][0] == {'ip': '66.249.64.1', 'visits': 2, 'first_seen': 1000, 'last_seen': 1001}


def test_site_tables_match_suffix_literally(store):
    with store.conn:
        store.conn.execute('CREATE TABLE "zz1xnginxxlogs" (id INTEGER)')
        store.conn.execute('CREATE TABLE "cd34_nginx_logs_old" (id INTEGER)')

    assert store.site_tables() == ['ab12_nginx_logs']
    assert store.clean_old_logs(1000) == (0, [])
