import re
import sqlite3
import logging
import threading
import time
from pathlib import Path

logger = logging.getLogger(__name__)

TABLE_SUFFIX = '_nginx_logs'

RECORD_COLUMNS = (
    'ip', 'pageview_flag', 'timestamp', 'method', 'url',
    'status_code', 'bytes_sent', 'referer',
    'user_browser', 'user_os', 'user_device', 'domestic_location', 'global_location',
    'is_spider', 'spider_type', 'spider_name', 'is_suspicious', 'suspicious_type', 'suspicious_reason',
)

TABLE_SCHEMA = """
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ip TEXT NOT NULL,
    pageview_flag INTEGER NOT NULL DEFAULT 0,
    timestamp INTEGER NOT NULL,
    method TEXT NOT NULL,
    url TEXT NOT NULL,
    status_code INTEGER NOT NULL,
    bytes_sent INTEGER NOT NULL,
    referer TEXT NOT NULL,
    user_browser TEXT NOT NULL,
    user_os TEXT NOT NULL,
    user_device TEXT NOT NULL,
    domestic_location TEXT NOT NULL,
    global_location TEXT NOT NULL,
    is_spider INTEGER NOT NULL DEFAULT 0,
    spider_type TEXT NOT NULL DEFAULT '',
    spider_name TEXT NOT NULL DEFAULT '',
    is_suspicious INTEGER NOT NULL DEFAULT 0,
    suspicious_type TEXT NOT NULL DEFAULT '',
    suspicious_reason TEXT NOT NULL DEFAULT ''
"""

# Колонки, добавленные после первой версии схемы
ADDED_COLUMNS = (
    "is_spider INTEGER NOT NULL DEFAULT 0",
    "spider_type TEXT NOT NULL DEFAULT ''",
    "spider_name TEXT NOT NULL DEFAULT ''",
    "is_suspicious INTEGER NOT NULL DEFAULT 0",
    "suspicious_type TEXT NOT NULL DEFAULT ''",
    "suspicious_reason TEXT NOT NULL DEFAULT ''",
)

INDEXED_COLUMNS = (
    'timestamp', 'url', 'ip', 'referer', 'user_browser', 'user_os', 'user_device',
    'domestic_location', 'global_location', 'is_spider', 'is_suspicious',
)

SUSPICIOUS_TABLE = """
CREATE TABLE IF NOT EXISTS suspicious_ips (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    website_id TEXT NOT NULL,
    ip TEXT NOT NULL,
    first_seen INTEGER NOT NULL,
    last_seen INTEGER NOT NULL,
    access_count INTEGER NOT NULL DEFAULT 1,
    reason_type TEXT NOT NULL,
    reason_detail TEXT NOT NULL,
    is_blocked INTEGER NOT NULL DEFAULT 0,
    blocked_at INTEGER NOT NULL DEFAULT 0,
    UNIQUE(website_id, ip)
);

CREATE INDEX IF NOT EXISTS idx_suspicious_ips_website ON suspicious_ips(website_id);
CREATE INDEX IF NOT EXISTS idx_suspicious_ips_ip ON suspicious_ips(ip);
CREATE INDEX IF NOT EXISTS idx_suspicious_ips_is_blocked ON suspicious_ips(is_blocked);
CREATE INDEX IF NOT EXISTS idx_suspicious_ips_last_seen ON suspicious_ips(last_seen);
"""

_SITE_ID_RE = re.compile(r'^[0-9A-Za-z_]+$')


class StoreInitError(RuntimeError):
    """БД не удалось открыть или инициализировать"""


def table_name(site_id):
    if not _SITE_ID_RE.match(site_id or ''):
        raise ValueError(f"invalid site id: {site_id!r}")
    return f"{site_id}{TABLE_SUFFIX}"


class RecordStore:
    def __init__(self, db_path, busy_timeout=5.0):
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        self.conn = None
        self.lock = threading.RLock()

    def connect(self, site_ids=()):
        """Открывает соединение и создаёт схему; ошибки здесь фатальны"""
        try:
            if str(self.db_path) != ':memory:':
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(
                str(self.db_path), timeout=self.busy_timeout, check_same_thread=False
            )
            self.conn.row_factory = sqlite3.Row
            # WAL: читатели не блокируют запись
            self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.execute("PRAGMA synchronous=NORMAL")
            self.conn.execute("PRAGMA cache_size=32768")
            self.conn.execute("PRAGMA temp_store=MEMORY")
            self.init_schema(site_ids)
        except (sqlite3.Error, OSError) as e:
            raise StoreInitError(f"cannot open store {self.db_path}: {e}") from e

    def close(self):
        with self.lock:
            if self.conn:
                self.conn.close()
                self.conn = None

    def init_schema(self, site_ids=()):
        """Создаёт общие таблицы и таблицы сайтов (идемпотентно)"""
        with self.lock:
            with self.conn:
                self.conn.executescript(SUSPICIOUS_TABLE)
        for site_id in site_ids:
            self.ensure_site_table(site_id)

    def ensure_site_table(self, site_id):
        table = table_name(site_id)
        with self.lock:
            self.conn.execute(f'CREATE TABLE IF NOT EXISTS "{table}" ({TABLE_SCHEMA})')

            for column in ADDED_COLUMNS:
                try:
                    self.conn.execute(f'ALTER TABLE "{table}" ADD COLUMN {column}')
                except sqlite3.OperationalError as e:
                    # колонка уже есть
                    logger.debug("ALTER TABLE %s skipped: %s", table, e)

            for column in INDEXED_COLUMNS:
                try:
                    self.conn.execute(
                        f'CREATE INDEX IF NOT EXISTS idx_{site_id}_{column} ON "{table}"({column})'
                    )
                except sqlite3.Error as e:
                    logger.warning("Index on %s(%s) failed: %s", table, column, e)

            try:
                self.conn.execute(
                    f'CREATE INDEX IF NOT EXISTS idx_{site_id}_pv_ts_ip '
                    f'ON "{table}" (pageview_flag, timestamp, ip)'
                )
            except sqlite3.Error as e:
                logger.warning("Composite index on %s failed: %s", table, e)
            self.conn.commit()

    def site_tables(self):
        with self.lock:
            cursor = self.conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND substr(name, -length(?)) = ?",
                (TABLE_SUFFIX, TABLE_SUFFIX)
            )
            return [row[0] for row in cursor.fetchall()]

    def insert_batch(self, site_id, records):
        """Вставляет пачку записей одной транзакцией; при ошибке откатывает всю пачку и бросает"""
        if not records:
            return 0

        data = [
            (
                r.ip, r.pageview_flag, r.timestamp, r.method, r.url,
                r.status, r.bytes_sent, r.referer,
                r.user_browser, r.user_os, r.user_device, r.domestic_location, r.global_location,
                r.is_spider, r.spider_type, r.spider_name, r.is_suspicious, r.suspicious_type, r.suspicious_reason,
            )
            for r in records
        ]
        placeholders = ', '.join('?' for _ in RECORD_COLUMNS)
        query = (
            f'INSERT INTO "{table_name(site_id)}" ({", ".join(RECORD_COLUMNS)}) '
            f'VALUES ({placeholders})'
        )

        with self.lock:
            try:
                with self.conn:
                    self.conn.executemany(query, data)
            except sqlite3.Error as e:
                logger.error("Batch insert of %d records into %s failed: %s", len(data), site_id, e)
                raise
        return len(data)

    def update_annotations(self, site_id, records):
        """Перезаписывает пометки робот/подозрительный для совпадающих строк"""
        query = f'''
            UPDATE "{table_name(site_id)}"
            SET is_spider = ?, spider_type = ?, spider_name = ?,
                is_suspicious = ?, suspicious_type = ?, suspicious_reason = ?
            WHERE ip = ? AND timestamp = ? AND method = ? AND url = ? AND status_code = ?
        '''
        updated = 0
        with self.lock:
            with self.conn:
                for r in records:
                    cursor = self.conn.execute(query, (
                        r.is_spider, r.spider_type, r.spider_name,
                        r.is_suspicious, r.suspicious_type, r.suspicious_reason,
                        r.ip, r.timestamp, r.method, r.url, r.status,
                    ))
                    updated += cursor.rowcount
        return updated

    def record_suspicious_access(self, site_id, ip, reason_type, reason_detail, timestamp):
        """Upsert записи реестра: первое появление создаёт, повторные увеличивают счётчик"""
        query = """
            INSERT INTO suspicious_ips (website_id, ip, first_seen, last_seen, access_count, reason_type, reason_detail)
            VALUES (?, ?, ?, ?, 1, ?, ?)
            ON CONFLICT(website_id, ip) DO UPDATE SET
                last_seen = MAX(last_seen, excluded.last_seen),
                access_count = access_count + 1
        """
        with self.lock:
            with self.conn:
                self.conn.execute(query, (site_id, ip, timestamp, timestamp, reason_type, reason_detail))

    def get_suspicious_ips(self, site_id, limit=20):
        with self.lock:
            cursor = self.conn.execute("""
                SELECT id, website_id, ip, first_seen, last_seen, access_count,
                       reason_type, reason_detail, is_blocked, blocked_at
                FROM suspicious_ips
                WHERE website_id = ?
                ORDER BY access_count DESC
                LIMIT ?
            """, (site_id, limit))
            return [dict(row) for row in cursor.fetchall()]

    def get_suspicious_ip(self, site_id, ip):
        with self.lock:
            row = self.conn.execute(
                "SELECT * FROM suspicious_ips WHERE website_id = ? AND ip = ?", (site_id, ip)
            ).fetchone()
            return dict(row) if row else None

    def set_blocked(self, site_id, ip, blocked=True):
        """Помечает IP в реестре как заблокированный (без правил файрвола)"""
        now = int(time.time())
        with self.lock:
            with self.conn:
                cursor = self.conn.execute("""
                    UPDATE suspicious_ips
                    SET is_blocked = ?, blocked_at = ?
                    WHERE website_id = ? AND ip = ?
                """, (1 if blocked else 0, now if blocked else 0, site_id, ip))
        if cursor.rowcount:
            logger.info("IP %s of site %s marked as %s", ip, site_id, 'blocked' if blocked else 'unblocked')
        return cursor.rowcount > 0

    def get_spider_stats(self, site_id, since, ip_limit=50):
        table = table_name(site_id)
        with self.lock:
            rows = self.conn.execute(f'''
                SELECT spider_type, MAX(spider_name) AS spider_name,
                       COUNT(*) AS visits, COUNT(DISTINCT ip) AS unique_ips
                FROM "{table}"
                WHERE is_spider = 1 AND timestamp >= ?
                GROUP BY spider_type
                ORDER BY visits DESC
                LIMIT 100
            ''', (since,)).fetchall()

            results = []
            for row in rows:
                ips = self.conn.execute(f'''
                    SELECT ip, COUNT(*) AS visits,
                           MIN(timestamp) AS first_seen, MAX(timestamp) AS last_seen
                    FROM "{table}"
                    WHERE is_spider = 1 AND spider_type = ? AND timestamp >= ?
                    GROUP BY ip
                    ORDER BY visits DESC
                    LIMIT ?
                ''', (row['spider_type'], since, ip_limit)).fetchall()
                entry = dict(row)
                entry['ips'] = [dict(ip_row) for ip_row in ips]
                results.append(entry)
            return results

    def clean_old_logs(self, cutoff):
        """Удаляет записи старше cutoff во всех таблицах сайтов; возвращает (удалено, ошибки)"""
        errors = []
        deleted = 0
        try:
            tables = self.site_tables()
        except sqlite3.Error as e:
            logger.error("Listing site tables failed: %s", e)
            return 0, [str(e)]

        for table in tables:
            try:
                with self.lock:
                    with self.conn:
                        cursor = self.conn.execute(f'DELETE FROM "{table}" WHERE timestamp < ?', (cutoff,))
                deleted += max(cursor.rowcount, 0)
            except sqlite3.Error as e:
                logger.error("Cleaning old logs in %s failed: %s", table, e)
                errors.append(f"{table}: {e}")

        if deleted > 0:
            logger.info("Deleted %d records older than %d", deleted, cutoff)
            try:
                with self.lock:
                    self.conn.execute("VACUUM")
            except sqlite3.Error as e:
                logger.error("VACUUM failed: %s", e)
                errors.append(f"vacuum: {e}")
        return deleted, errors

    def execute_query(self, query, params=()):
        """Выполняет SQL запрос и возвращает все строки"""
        with self.lock:
            cursor = self.conn.execute(query, params)
            return cursor.fetchall()

    def count_rows(self, site_id):
        return self.execute_query(f'SELECT COUNT(*) FROM "{table_name(site_id)}"')[0][0]
