from dataclasses import dataclass, field, asdict
from typing import List

from core.spider import SPIDER_NAMES
from core.suspicious import REASON_NAMES
from .periods import epoch_bounds


@dataclass
class SpiderStats:
    spiders: List[dict] = field(default_factory=list)
    total_visits: int = 0

    def to_dict(self):
        return asdict(self)


@dataclass
class SuspiciousStats:
    ips: List[dict] = field(default_factory=list)

    def to_dict(self):
        return asdict(self)


class SpiderStatsQuery:
    """Визиты роботов по типам и их самые активные IP"""

    def __init__(self, store):
        self.store = store

    def query(self, site_id, params):
        since, _ = epoch_bounds(params['timeRange'])
        spiders = self.store.get_spider_stats(site_id, since, int(params.get('limit', 50)))
        for entry in spiders:
            entry['display_name'] = SPIDER_NAMES.get(entry['spider_type'], entry['spider_name'])
        return SpiderStats(spiders=spiders, total_visits=sum(s['visits'] for s in spiders))


class SuspiciousStatsQuery:
    """Реестр подозрительных IP, самые активные первыми"""

    def __init__(self, store):
        self.store = store

    def query(self, site_id, params):
        ips = self.store.get_suspicious_ips(site_id, int(params.get('limit', 20)))
        for entry in ips:
            entry['reason_name'] = REASON_NAMES.get(entry['reason_type'], entry['reason_type'])
            entry['is_blocked'] = bool(entry['is_blocked'])
        return SuspiciousStats(ips=ips)
