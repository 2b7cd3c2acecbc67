from dataclasses import dataclass, asdict

from core.db import table_name
from .periods import epoch_bounds


@dataclass
class OverallStats:
    pv: int = 0
    uv: int = 0
    traffic: int = 0

    def is_empty(self):
        return self.pv == 0 and self.uv == 0

    def to_dict(self):
        return asdict(self)


class OverallStatsQuery:
    """PV, UV и трафик сайта за диапазон"""

    def __init__(self, store):
        self.store = store

    def query(self, site_id, params):
        start, end = epoch_bounds(params['timeRange'])
        rows = self.store.execute_query(f'''
            SELECT COUNT(*) AS pv,
                   COUNT(DISTINCT ip) AS uv,
                   COALESCE(SUM(bytes_sent), 0) AS traffic
            FROM "{table_name(site_id)}" INDEXED BY idx_{site_id}_pv_ts_ip
            WHERE pageview_flag = 1 AND timestamp >= ? AND timestamp < ?
        ''', (start, end))
        pv, uv, traffic = rows[0]
        return OverallStats(pv=pv, uv=uv, traffic=traffic)
