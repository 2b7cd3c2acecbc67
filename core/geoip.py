import ipaddress
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout

import geoip2.database
import geoip2.errors

logger = logging.getLogger(__name__)

LOCAL = ('local', 'local')
INTRANET = ('intranet', 'local network')
UNKNOWN = ('unknown', 'unknown')

PRIVATE_NETWORKS = (
    ipaddress.ip_network('10.0.0.0/8'),
    ipaddress.ip_network('172.16.0.0/12'),
    ipaddress.ip_network('192.168.0.0/16'),
)

# Длинные суффиксы раньше коротких
PROVINCE_SUFFIXES = (
    '维吾尔自治区', '壮族自治区', '回族自治区', '特别行政区', '自治区', '省',
    ' Special Administrative Region', ' Autonomous Region', ' Province', ' SAR',
)

CACHE_LIMIT = 100000


class MaxMindSearcher:
    """Офлайн-поиск по GeoLite2/GeoIP2 .mmdb, ответ в виде 'страна|регион|провинция|город|ISP'"""

    def __init__(self, mmdb_path, locale='en'):
        self.reader = geoip2.database.Reader(str(mmdb_path))
        self.locale = locale

    def _name(self, record):
        names = getattr(record, 'names', None) or {}
        return names.get(self.locale) or names.get('en') or '0'

    def search(self, ip):
        try:
            resp = self.reader.city(ip)
        except geoip2.errors.AddressNotFoundError:
            return '0|0|0|0|0'

        country = self._name(resp.country)
        region = self._name(resp.continent)
        province = self._name(resp.subdivisions.most_specific)
        city = self._name(resp.city)
        return f"{country}|{region}|{province}|{city}|0"

    def close(self):
        self.reader.close()


def split_region(region):
    parts = (region or '').split('|')[:5]
    return parts + [''] * (5 - len(parts))


def remove_suffixes(name):
    for suffix in PROVINCE_SUFFIXES:
        if len(name) > len(suffix) and name.endswith(suffix):
            return name[:-len(suffix)]
    return name


def _present(value):
    return bool(value) and value != '0'


class GeoResolver:
    """IP -> (domestic, global) локация с жёстким таймаутом на поиск"""

    def __init__(self, searcher=None, timeout_ms=50, home_country='China', max_workers=4):
        self.searcher = searcher
        self.timeout = timeout_ms / 1000.0
        self.home_country = home_country or None
        self.cache = {}
        self.timeout_count = 0
        self.error_count = 0
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='geoip')

    @classmethod
    def from_config(cls, cfg):
        searcher = None
        mmdb_path = cfg.get('geoip.mmdb_path')
        if cfg.get('geoip.enabled') and mmdb_path:
            try:
                searcher = MaxMindSearcher(mmdb_path, locale=cfg.get('geoip.locale', 'en'))
                logger.info("GeoIP database loaded from %s", mmdb_path)
            except (OSError, ValueError, RuntimeError) as e:
                logger.warning("GeoIP database %s is unavailable: %s", mmdb_path, e)
        return cls(
            searcher=searcher,
            timeout_ms=cfg.get('geoip.timeout_ms', 50),
            home_country=cfg.get('geoip.home_country'),
        )

    def resolve(self, ip):
        """Возвращает (domestic, global); никогда не бросает исключений"""
        if not ip or ip == 'localhost':
            return LOCAL

        try:
            addr = ipaddress.ip_address(ip)
        except ValueError:
            return UNKNOWN

        if addr.is_loopback:
            return LOCAL
        if addr.version == 4 and any(addr in net for net in PRIVATE_NETWORKS):
            return INTRANET

        if ip in self.cache:
            return self.cache[ip]

        region = self._lookup(ip)
        if region is None:
            return UNKNOWN

        location = self.parse_region(region)
        if len(self.cache) >= CACHE_LIMIT:
            self.cache.clear()
        self.cache[ip] = location
        return location

    def _lookup(self, ip):
        if self.searcher is None:
            return None

        future = self._executor.submit(self.searcher.search, ip)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout:
            future.cancel()
            self.timeout_count += 1
            logger.debug("GeoIP lookup for %s timed out", ip)
            return None
        except Exception as e:
            self.error_count += 1
            logger.debug("GeoIP lookup for %s failed: %s", ip, e)
            return None

    def parse_region(self, region):
        country, _area, province, city, _isp = split_region(region)

        if not _present(country):
            return UNKNOWN

        if self.home_country is None or country == self.home_country:
            if _present(province):
                domestic = remove_suffixes(province)
            elif _present(city):
                domestic = city
            else:
                domestic = country
        else:
            domestic = 'foreign'

        return domestic, country

    def close(self):
        self._executor.shutdown(wait=False)
        if self.searcher is not None and hasattr(self.searcher, 'close'):
            self.searcher.close()
