import time
from datetime import datetime

import pytest

from config import Config
from core.context import AppContext
from core.db import RecordStore
from core.geoip import GeoResolver

BROWSER_UA = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)


def format_line(ip='8.8.4.4', ts=None, method='GET', path='/', status=200, size=512,
                referer='-', ua=BROWSER_UA):
    ts = int(time.time()) if ts is None else ts
    stamp = datetime.fromtimestamp(ts).astimezone().strftime('%d/%b/%Y:%H:%M:%S %z')
    return f'{ip} - - [{stamp}] "{method} {path} HTTP/1.1" {status} {size} "{referer}" "{ua}"'


class StubSearcher:
    """Подмена офлайн-базы: фиксированный ответ и счётчик вызовов"""

    def __init__(self, region='China|Asia|Guangdong Province|Shenzhen|0', delay=0.0):
        self.region = region
        self.delay = delay
        self.calls = 0

    def search(self, ip):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        return self.region


@pytest.fixture
def line():
    return format_line


@pytest.fixture
def log_file(tmp_path):
    path = tmp_path / 'access.log'
    path.write_text('')
    return path


def append_lines(path, lines):
    with open(path, 'a', encoding='utf-8') as f:
        for text in lines:
            f.write(text + '\n')


@pytest.fixture
def append():
    return append_lines


@pytest.fixture
def stub_searcher():
    return StubSearcher


@pytest.fixture
def cfg(tmp_path, log_file):
    return Config.from_dict({
        'websites': [{'name': 'blog', 'log_path': str(log_file)}],
        'system': {'data_dir': str(tmp_path / 'data'), 'task_interval': '5m'},
        'geoip': {'enabled': False},
    })


@pytest.fixture
def ctx(cfg):
    context = AppContext.create(cfg, geo=GeoResolver(searcher=None))
    yield context
    context.close()


@pytest.fixture
def site(cfg):
    return cfg.sites()[0]


@pytest.fixture
def store(tmp_path):
    s = RecordStore(tmp_path / 'store.db')
    s.connect(['ab12'])
    yield s
    s.close()
