import copy
import glob
import hashlib
import logging
import re
from datetime import timedelta
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    "websites": [],
    "system": {
        "data_dir": "./nixvis_data",
        "task_interval": "5m",
        "log_destination": "stdout",
        "log_level": "INFO",
        "maintenance_hour": 2,
        "retention_days": 45
    },
    "pv_filter": {
        "status_code_include": [200],
        "exclude_patterns": [
            r"favicon.ico$",
            r"robots.txt$",
            r"sitemap.xml$",
            r"\.(?:js|css|jpg|jpeg|png|gif|svg|webp|woff|woff2|ttf|eot|ico)$",
            r"^/api/",
            r"^/ajax/",
            r"^/health$",
            r"^/_(?:nuxt|next)/",
            r"rss.xml$",
            r"feed.xml$",
            r"atom.xml$"
        ],
        "exclude_ips": []
    },
    "geoip": {
        "enabled": True,
        "mmdb_path": "",
        "timeout_ms": 50,
        "home_country": "China",
        "locale": "en"
    },
    "stats": {
        "logs_max_page_size": 1000
    }
}

DEFAULT_INTERVAL = timedelta(minutes=5)
MIN_INTERVAL = timedelta(seconds=5)

_INTERVAL_RE = re.compile(r'(\d+(?:\.\d+)?)(h|m|s)')
_GLOB_CHARS = ('*', '?', '[')


def parse_interval(value, default=DEFAULT_INTERVAL):
    """Разбирает интервал вида '5m', '25s', '1h30m'. Минимум 5 секунд."""
    if not value:
        return default
    text = str(value).strip().lower()
    parts = _INTERVAL_RE.findall(text)
    if not parts or ''.join(n + u for n, u in parts) != text:
        logger.info("Invalid interval %r, using default %s", value, default)
        return default

    units = {'h': 3600, 'm': 60, 's': 1}
    seconds = sum(float(n) * units[u] for n, u in parts)
    interval = timedelta(seconds=seconds)
    if interval < MIN_INTERVAL:
        logger.info("Interval %r is too short, raised to %s", value, MIN_INTERVAL)
        return MIN_INTERVAL
    return interval


def generate_site_id(name):
    """Короткий ID сайта: первые 2 байта MD5 от имени."""
    return hashlib.md5(name.encode('utf-8')).hexdigest()[:4]


def is_glob_pattern(path):
    return any(ch in path for ch in _GLOB_CHARS)


class Config:
    def __init__(self, config_path=None):
        self.config = copy.deepcopy(DEFAULT_CONFIG)
        self.path = Path(config_path) if config_path else None
        if config_path:
            self.load(config_path)

    @classmethod
    def from_dict(cls, data):
        cfg = cls()
        cfg._update_recursive(cfg.config, data or {})
        return cfg

    def load(self, config_path):
        path = Path(config_path)
        if not path.exists():
            print(f"Конфигурация {path} не найдена, используются значения по умолчанию")
            return

        try:
            with open(path, 'r', encoding='utf-8') as f:
                user_config = yaml.safe_load(f) or {}
                self._update_recursive(self.config, user_config)
            logger.info("Config loaded from %s", path)
        except (OSError, yaml.YAMLError) as e:
            print(f"Ошибка при загрузке конфигурации: {e}")

    def _update_recursive(self, d, u):
        for k, v in u.items():
            if isinstance(v, dict):
                d[k] = self._update_recursive(d.get(k, {}), v)
            else:
                d[k] = v
        return d

    def get(self, path, default=None):
        keys = path.split('.')
        val = self.config
        for key in keys:
            if isinstance(val, dict):
                val = val.get(key)
            else:
                return default
        return val if val is not None else default

    @property
    def data_dir(self):
        return Path(self.get('system.data_dir', './nixvis_data'))

    @property
    def scan_interval(self):
        return parse_interval(self.get('system.task_interval'))

    def sites(self):
        """Список сайтов: [{'id', 'name', 'log_path'}] в порядке из конфигурации"""
        result = []
        for site in self.get('websites', []):
            name = site.get('name')
            if not name:
                continue
            result.append({
                'id': generate_site_id(name),
                'name': name,
                'log_path': site.get('log_path', '')
            })
        return result

    def site_by_id(self, site_id):
        for site in self.sites():
            if site['id'] == site_id:
                return site
        return None

    def validate(self):
        """Возвращает список проблем конфигурации (пустой, если всё в порядке)"""
        problems = []
        sites = self.sites()
        if not sites:
            problems.append("no websites configured, at least one is required")

        for site in sites:
            log_path = site['log_path']
            if not log_path:
                problems.append(f"'{site['name']}': log_path is missing")
            elif is_glob_pattern(log_path):
                if not glob.glob(log_path):
                    problems.append(f"'{site['name']}': pattern {log_path} matches no files")
            elif not Path(log_path).exists():
                problems.append(f"'{site['name']}': {log_path} does not exist")

        if not self.get('pv_filter.status_code_include'):
            problems.append("pv_filter.status_code_include must not be empty")
        if not self.get('pv_filter.exclude_patterns'):
            problems.append("pv_filter.exclude_patterns must not be empty")
        return problems

    @staticmethod
    def write_default(path):
        """Записывает пример конфигурации в YAML"""
        sample = copy.deepcopy(DEFAULT_CONFIG)
        sample['websites'] = [
            {'name': 'example-blog', 'log_path': '/var/log/nginx/blog.access.log'},
            {'name': 'example-shop', 'log_path': '/var/log/nginx/shop.access.log*'}
        ]
        with open(path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(sample, f, allow_unicode=True, sort_keys=False)
