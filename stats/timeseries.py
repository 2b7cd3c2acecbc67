from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import List

import pandas as pd

from core.db import table_name
from .periods import time_period

VIEW_TYPES = {
    'hourly': 'h',
    'daily': 'D',
}


@dataclass
class TimeSeriesStats:
    labels: List[str] = field(default_factory=list)
    visitors: List[int] = field(default_factory=list)
    pageviews: List[int] = field(default_factory=list)

    def to_dict(self):
        return asdict(self)


class TimeSeriesStatsQuery:
    """PV/UV по часам или дням; пустые интервалы заполняются нулями"""

    def __init__(self, store):
        self.store = store

    def query(self, site_id, params):
        view_type = params.get('viewType', 'hourly')
        if view_type not in VIEW_TYPES:
            raise ValueError(f"viewType must be one of {tuple(VIEW_TYPES)}")
        freq = VIEW_TYPES[view_type]

        start, end = time_period(params['timeRange'])
        rows = self.store.execute_query(f'''
            SELECT timestamp, ip
            FROM "{table_name(site_id)}" INDEXED BY idx_{site_id}_pv_ts_ip
            WHERE pageview_flag = 1 AND timestamp >= ? AND timestamp < ?
        ''', (int(start.timestamp()), int(end.timestamp())))

        buckets = pd.date_range(start, end, freq=freq, inclusive='left')
        df = pd.DataFrame([tuple(r) for r in rows], columns=['timestamp', 'ip'])
        if df.empty:
            grouped = pd.DataFrame(index=buckets, data={'pageviews': 0, 'visitors': 0})
        else:
            # смещение берётся для каждой метки отдельно, переход на летнее время внутри диапазона учитывается
            df['bucket'] = pd.to_datetime(df['timestamp'].map(datetime.fromtimestamp)).dt.floor(freq)
            grouped = df.groupby('bucket').agg(
                pageviews=('ip', 'size'),
                visitors=('ip', 'nunique'),
            ).reindex(buckets, fill_value=0)

        if view_type == 'hourly':
            label_format = '%H:00' if len(buckets) <= 24 else '%m-%d %H:00'
        else:
            label_format = '%Y-%m-%d'

        return TimeSeriesStats(
            labels=[ts.strftime(label_format) for ts in grouped.index],
            visitors=[int(v) for v in grouped['visitors']],
            pageviews=[int(v) for v in grouped['pageviews']],
        )
