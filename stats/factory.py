import logging
from datetime import timedelta
from enum import Enum

from .cache import StatsCache
from .clients import ClientStatsQuery, LOCATION_TYPES
from .logs import LogsStatsQuery, MAX_PAGE_SIZE, SORT_ORDERS
from .overall import OverallStats, OverallStatsQuery
from .periods import TIME_RANGES
from .security import SpiderStatsQuery, SuspiciousStatsQuery
from .timeseries import TimeSeriesStatsQuery, VIEW_TYPES

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY = 300


class QueryKind(Enum):
    TIMESERIES = 'timeseries'
    OVERALL = 'overall'
    URL = 'url'
    REFERER = 'referer'
    BROWSER = 'browser'
    OS = 'os'
    DEVICE = 'device'
    LOCATION = 'location'
    LOGS = 'logs'
    SPIDERS = 'spiders'
    SUSPICIOUS = 'suspicious'


# Обязательные параметры запроса по видам: str, int (>= 1) или перечисление
PARAM_DEFS = {
    QueryKind.TIMESERIES: {'timeRange': TIME_RANGES, 'viewType': tuple(VIEW_TYPES)},
    QueryKind.OVERALL: {'timeRange': TIME_RANGES},
    QueryKind.URL: {'timeRange': TIME_RANGES, 'limit': int},
    QueryKind.REFERER: {'timeRange': TIME_RANGES, 'limit': int},
    QueryKind.BROWSER: {'timeRange': TIME_RANGES, 'limit': int},
    QueryKind.OS: {'timeRange': TIME_RANGES, 'limit': int},
    QueryKind.DEVICE: {'timeRange': TIME_RANGES, 'limit': int},
    QueryKind.LOCATION: {'timeRange': TIME_RANGES, 'limit': int, 'locationType': LOCATION_TYPES},
    QueryKind.LOGS: {'page': int, 'pageSize': int, 'sortField': str, 'sortOrder': SORT_ORDERS},
    QueryKind.SPIDERS: {'timeRange': TIME_RANGES},
    QueryKind.SUSPICIOUS: {},
}

OPTIONAL_PARAMS = {
    QueryKind.LOGS: {'filter': str},
    QueryKind.SPIDERS: {'limit': int},
    QueryKind.SUSPICIOUS: {'limit': int},
}


class StatsFactory:
    """Диспетчер запросов статистики с кэшем результатов"""

    def __init__(self, store, expiry=DEFAULT_EXPIRY, cache=None, logs_max_page_size=MAX_PAGE_SIZE):
        self.store = store
        self.expiry = expiry.total_seconds() if isinstance(expiry, timedelta) else float(expiry)
        self.cache = cache if cache is not None else StatsCache()
        self.managers = {
            QueryKind.TIMESERIES: TimeSeriesStatsQuery(store),
            QueryKind.OVERALL: OverallStatsQuery(store),
            QueryKind.URL: ClientStatsQuery(store, 'url'),
            QueryKind.REFERER: ClientStatsQuery(store, 'referer'),
            QueryKind.BROWSER: ClientStatsQuery(store, 'browser'),
            QueryKind.OS: ClientStatsQuery(store, 'os'),
            QueryKind.DEVICE: ClientStatsQuery(store, 'device'),
            QueryKind.LOCATION: ClientStatsQuery(store, 'location'),
            QueryKind.LOGS: LogsStatsQuery(store, logs_max_page_size),
            QueryKind.SPIDERS: SpiderStatsQuery(store),
            QueryKind.SUSPICIOUS: SuspiciousStatsQuery(store),
        }

    @classmethod
    def from_context(cls, ctx):
        return cls(
            ctx.store,
            expiry=ctx.config.scan_interval,
            logs_max_page_size=ctx.config.get('stats.logs_max_page_size', MAX_PAGE_SIZE),
        )

    def query(self, kind, site_id, params=None):
        kind = to_kind(kind)
        params = dict(params or {})
        key = self.cache.build_key(kind.value, site_id, params)

        cached = self.cache.get(key, self.expiry)
        if cached is not None:
            return cached

        result = self.managers[kind].query(site_id, params)

        # Пустой итог не кэшируется, чтобы новые данные появились сразу
        if not is_empty_result(result):
            self.cache.set(key, result)
        else:
            logger.debug("Empty %s result for site %s is not cached", kind.value, site_id)
        return result

    def build_query(self, kind_name, raw_params):
        """Проверяет строковые параметры запроса; возвращает (kind, site_id, params)"""
        kind = to_kind(kind_name)
        site_id = raw_params.get('id')
        if not site_id:
            raise ValueError("missing required parameter: id")

        params = {}
        for name, spec in PARAM_DEFS[kind].items():
            params[name] = _convert(name, raw_params.get(name), spec)

        for name, spec in OPTIONAL_PARAMS.get(kind, {}).items():
            if raw_params.get(name):
                params[name] = _convert(name, raw_params[name], spec)
        return kind, site_id, params

    def query_request(self, kind_name, raw_params):
        kind, site_id, params = self.build_query(kind_name, raw_params)
        return self.query(kind, site_id, params)


def to_kind(kind):
    if isinstance(kind, QueryKind):
        return kind
    try:
        return QueryKind(kind)
    except ValueError:
        raise ValueError(f"unsupported stats kind: {kind}") from None


def is_empty_result(result):
    if isinstance(result, OverallStats):
        return result.is_empty()
    return False


def _convert(name, value, spec):
    if value is None or value == '':
        raise ValueError(f"missing required parameter: {name}")
    if spec is int:
        try:
            number = int(value)
        except (TypeError, ValueError):
            number = 0
        if number < 1:
            raise ValueError(f"{name} must be an integer >= 1")
        return number
    if isinstance(spec, tuple):
        if value not in spec:
            raise ValueError(f"{name} must be one of {list(spec)}")
    return value
