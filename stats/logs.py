from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import List

from core.db import table_name

MAX_PAGE_SIZE = 1000
DEFAULT_PAGE_SIZE = 100
SORT_FIELDS = ('timestamp', 'ip', 'url', 'status_code', 'bytes_sent')
SORT_ORDERS = ('asc', 'desc')

LOG_COLUMNS = (
    'id', 'ip', 'timestamp', 'method', 'url', 'status_code', 'bytes_sent', 'referer',
    'user_browser', 'user_os', 'user_device', 'domestic_location', 'global_location',
    'pageview_flag', 'is_spider', 'is_suspicious',
)

FILTER_CLAUSE = (
    " WHERE url LIKE ? ESCAPE '\\' OR ip LIKE ? ESCAPE '\\'"
    " OR referer LIKE ? ESCAPE '\\' OR domestic_location LIKE ? ESCAPE '\\'"
)


def like_pattern(text):
    """Подстрока для LIKE: % и _ ищутся буквально"""
    escaped = text.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
    return f"%{escaped}%"


@dataclass
class LogsStats:
    logs: List[dict] = field(default_factory=list)
    pagination: dict = field(default_factory=dict)

    def to_dict(self):
        return asdict(self)


class LogsStatsQuery:
    """Постраничный список сырых записей с сортировкой и фильтром"""

    def __init__(self, store, max_page_size=MAX_PAGE_SIZE):
        self.store = store
        self.max_page_size = max_page_size

    def query(self, site_id, params):
        page = max(int(params.get('page', 1)), 1)
        page_size = int(params.get('pageSize', DEFAULT_PAGE_SIZE))
        if page_size <= 0:
            page_size = DEFAULT_PAGE_SIZE
        page_size = min(page_size, self.max_page_size)

        # Имя колонки попадает в SQL только из белого списка
        sort_field = params.get('sortField', 'timestamp')
        if sort_field not in SORT_FIELDS:
            sort_field = 'timestamp'
        sort_order = params.get('sortOrder', 'desc')
        if sort_order not in SORT_ORDERS:
            sort_order = 'desc'

        table = table_name(site_id)
        where = ''
        args = []
        search = params.get('filter')
        if search:
            where = FILTER_CLAUSE
            args = [like_pattern(search)] * 4

        rows = self.store.execute_query(
            f'SELECT {", ".join(LOG_COLUMNS)} FROM "{table}"{where} '
            f'ORDER BY {sort_field} {sort_order.upper()} LIMIT ? OFFSET ?',
            (*args, page_size, (page - 1) * page_size),
        )
        total = self.store.execute_query(f'SELECT COUNT(*) FROM "{table}"{where}', tuple(args))[0][0]

        logs = []
        for row in rows:
            entry = dict(zip(LOG_COLUMNS, row))
            entry['time'] = datetime.fromtimestamp(entry['timestamp']).strftime('%Y-%m-%d %H:%M:%S')
            entry['pageview_flag'] = entry['pageview_flag'] == 1
            entry['is_spider'] = entry['is_spider'] == 1
            entry['is_suspicious'] = entry['is_suspicious'] == 1
            logs.append(entry)

        return LogsStats(logs=logs, pagination={
            'total': total,
            'page': page,
            'pageSize': page_size,
            'pages': (total + page_size - 1) // page_size,
        })
