import hashlib
import json
import threading
import time


class StatsCache:
    """Кэш результатов статистики с окном свежести.

    Одновременные промахи по одному ключу могут посчитать результат дважды,
    запросы к БД идемпотентны.
    """

    def __init__(self, clock=time.monotonic):
        self.clock = clock
        self.lock = threading.Lock()
        self.items = {}

    @staticmethod
    def build_key(kind, site_id, params=None):
        payload = json.dumps(
            {'kind': kind, 'site': site_id, 'params': params or {}},
            sort_keys=True, default=str, ensure_ascii=False,
        )
        return hashlib.sha1(payload.encode('utf-8')).hexdigest()

    def get(self, key, expiry):
        """Значение, если оно моложе expiry секунд, иначе None"""
        with self.lock:
            item = self.items.get(key)
            if item is None:
                return None
            value, stored_at = item
            if self.clock() - stored_at >= expiry:
                del self.items[key]
                return None
            return value

    def set(self, key, value):
        with self.lock:
            self.items[key] = (value, self.clock())

    def clear(self):
        with self.lock:
            self.items.clear()

    def __len__(self):
        with self.lock:
            return len(self.items)
