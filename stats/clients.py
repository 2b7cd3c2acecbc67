from dataclasses import dataclass, field, asdict
from typing import List

import numpy as np

from core.db import table_name
from .periods import epoch_bounds

DIMENSION_COLUMNS = {
    'url': 'url',
    'referer': 'referer',
    'browser': 'user_browser',
    'os': 'user_os',
    'device': 'user_device',
}

LOCATION_TYPES = ('domestic', 'global')


@dataclass
class ClientStats:
    key: List[str] = field(default_factory=list)
    pv: List[int] = field(default_factory=list)
    uv: List[int] = field(default_factory=list)
    pv_percent: List[int] = field(default_factory=list)
    uv_percent: List[int] = field(default_factory=list)

    def to_dict(self):
        return asdict(self)


def share_percent(values):
    """Доли в процентах, округление до ближайшего целого (половина от нуля)"""
    arr = np.asarray(values, dtype=float)
    total = arr.sum()
    if total <= 0:
        return []
    return [int(x) for x in np.floor(arr / total * 100 + 0.5)]


class ClientStatsQuery:
    """Топ-N значений одной колонки по числу уникальных посетителей"""

    def __init__(self, store, dimension):
        if dimension != 'location' and dimension not in DIMENSION_COLUMNS:
            raise ValueError(f"unknown dimension: {dimension}")
        self.store = store
        self.dimension = dimension

    def column_for(self, params):
        if self.dimension != 'location':
            return DIMENSION_COLUMNS[self.dimension]
        location_type = params.get('locationType', 'domestic')
        if location_type not in LOCATION_TYPES:
            raise ValueError(f"locationType must be one of {LOCATION_TYPES}")
        return f"{location_type}_location"

    def query(self, site_id, params):
        column = self.column_for(params)
        start, end = epoch_bounds(params['timeRange'])
        rows = self.store.execute_query(f'''
            SELECT {column} AS key,
                   COUNT(*) AS pv,
                   COUNT(DISTINCT ip) AS uv
            FROM "{table_name(site_id)}" INDEXED BY idx_{site_id}_pv_ts_ip
            WHERE pageview_flag = 1 AND timestamp >= ? AND timestamp < ?
            GROUP BY {column}
            ORDER BY uv DESC
            LIMIT ?
        ''', (start, end, int(params.get('limit', 10))))

        result = ClientStats()
        for key, pv, uv in rows:
            result.key.append(key)
            result.pv.append(pv)
            result.uv.append(uv)

        if sum(result.pv) > 0 and sum(result.uv) > 0:
            result.pv_percent = share_percent(result.pv)
            result.uv_percent = share_percent(result.uv)
        return result
