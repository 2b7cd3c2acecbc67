import logging
import re
from dataclasses import dataclass

from .spider import SpiderDetector
from .suspicious import SuspiciousDetector

logger = logging.getLogger(__name__)


@dataclass
class Classification:
    is_spider: bool = False
    spider_type: str = ''
    spider_name: str = ''
    is_suspicious: bool = False
    suspicious_type: str = ''
    suspicious_reason: str = ''
    is_pageview: bool = False


class RequestClassifier:
    """Классификация запроса: робот, подозрительный доступ, учёт просмотра (PV)"""

    def __init__(self, status_code_include=(200,), exclude_patterns=(), exclude_ips=()):
        self.spiders = SpiderDetector()
        self.suspicious = SuspiciousDetector()
        self.status_code_include = set(int(code) for code in status_code_include)
        self.exclude_ips = set(exclude_ips)
        self.exclude_patterns = []
        for pattern in exclude_patterns:
            try:
                self.exclude_patterns.append(re.compile(pattern))
            except re.error as e:
                logger.warning("Invalid pageview exclude pattern %r: %s", pattern, e)

    @classmethod
    def from_config(cls, cfg):
        return cls(
            status_code_include=cfg.get('pv_filter.status_code_include', [200]),
            exclude_patterns=cfg.get('pv_filter.exclude_patterns', []),
            exclude_ips=cfg.get('pv_filter.exclude_ips', []),
        )

    def detect_spider(self, ip, user_agent):
        return self.spiders.detect(ip, user_agent)

    def detect_suspicious(self, ip, url, method, user_agent, status=None):
        """Робот никогда не считается подозрительным; 403/429 проверяются до шаблонов"""
        is_spider, _, _ = self.spiders.detect(ip, user_agent)
        if is_spider:
            return False, '', ''
        return self._suspicious(url, status)

    def _suspicious(self, url, status):
        if status is not None:
            flagged = self.suspicious.detect_status(status)
            if flagged[0]:
                return flagged
        return self.suspicious.detect_path(url)

    def should_count_as_pageview(self, status, url, ip):
        if status not in self.status_code_include:
            return False
        if ip in self.exclude_ips:
            return False
        for pattern in self.exclude_patterns:
            if pattern.search(url):
                return False
        return True

    def classify(self, ip, url, method, user_agent, status):
        result = Classification()

        is_spider, spider_type, spider_name = self.spiders.detect(ip, user_agent)
        if is_spider:
            result.is_spider = True
            result.spider_type = spider_type
            result.spider_name = spider_name
            return result

        result.is_pageview = self.should_count_as_pageview(status, url, ip)
        is_suspicious, suspicious_type, suspicious_reason = self._suspicious(url, status)
        if is_suspicious:
            result.is_suspicious = True
            result.suspicious_type = suspicious_type
            result.suspicious_reason = suspicious_reason
        return result
