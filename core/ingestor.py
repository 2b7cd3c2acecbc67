import glob
import logging
import os
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from config import is_glob_pattern
from .parser import LogParser
from .scan_state import determine_start_offset, update_file_state

logger = logging.getLogger(__name__)

BATCH_SIZE = 100
STALE_DAYS = 31


@dataclass
class ScanResult:
    """Итог прохода по одному сайту"""
    site_name: str
    site_id: str
    total_entries: int = 0
    skipped_lines: int = 0
    stale_lines: int = 0
    batches: List[int] = field(default_factory=list)
    duration: float = 0.0
    success: bool = True
    error: Optional[str] = None
    errors: List[str] = field(default_factory=list)


class LogIngestor:
    """Инкрементальное чтение логов, классификация и пакетная запись в БД"""

    def __init__(self, ctx, batch_size=BATCH_SIZE, stale_days=STALE_DAYS):
        self.ctx = ctx
        self.store = ctx.store
        self.batch_size = batch_size
        self.stale_days = stale_days
        self.retention_days = ctx.config.get('system.retention_days', 45)
        self.maintenance_hour = ctx.config.get('system.maintenance_hour', 2)
        self.state = ctx.state_store.load()
        self.last_cleanup_date = None

    def run_once(self, now=None) -> List[ScanResult]:
        """Один полный проход по всем сайтам; состояние сохраняется один раз в конце"""
        now = now if now is not None else time.time()
        results = []
        for site in self.ctx.config.sites():
            results.append(self.scan_site(site, now))

        self.ctx.state_store.save(self.state)
        return results

    def scan_site(self, site, now=None) -> ScanResult:
        now = now if now is not None else time.time()
        started = time.monotonic()
        result = ScanResult(site_name=site['name'], site_id=site['id'])

        paths, error = self.resolve_log_files(site['log_path'])
        if error:
            logger.error("Site %s: %s", site['name'], error)
            result.success = False
            result.error = error
        else:
            self.store.ensure_site_table(site['id'])
            for path in paths:
                self.scan_file(site['id'], path, result, now)

        result.duration = time.monotonic() - started
        return result

    @staticmethod
    def resolve_log_files(log_path) -> Tuple[List[str], Optional[str]]:
        if not log_path:
            return [], "log path is not configured"
        if is_glob_pattern(log_path):
            matches = sorted(os.path.abspath(p) for p in glob.glob(log_path) if os.path.isfile(p))
            if not matches:
                return [], f"log path pattern {log_path} matches no files"
            return matches, None
        if not os.path.isfile(log_path):
            return [], f"log file {log_path} does not exist"
        return [os.path.abspath(log_path)], None

    def scan_file(self, site_id, path, result, now=None):
        now = now if now is not None else time.time()
        try:
            with open(path, 'rb') as f:
                current_size = os.fstat(f.fileno()).st_size
                start_offset = determine_start_offset(self.state, site_id, path, current_size)
                f.seek(start_offset)
                count, errors = self.process_lines(
                    site_id, self._read_lines(f, current_size - start_offset), result, now
                )
        except OSError as e:
            logger.error("Cannot read log file %s: %s", path, e)
            result.errors.append(f"{path}: {e}")
            return

        result.errors.extend(errors)
        update_file_state(self.state, site_id, path, current_size)
        if count > 0:
            logger.info("Site %s: %s scanned, %d records parsed", site_id, path, count)

    @staticmethod
    def _read_lines(f, limit):
        """Строки файла в пределах limit байт от текущей позиции"""
        remaining = limit
        while remaining > 0:
            raw = f.readline()
            if not raw:
                break
            if len(raw) > remaining:
                raw = raw[:remaining]
            remaining -= len(raw)
            yield raw.decode('utf-8', errors='replace').rstrip('\r\n')

    def process_lines(self, site_id, lines, result, now=None) -> Tuple[int, List[str]]:
        """Разбирает, классифицирует и пишет строки пачками; возвращает (записей, ошибки)"""
        now = now if now is not None else time.time()
        cutoff = now - self.stale_days * 86400
        count = 0
        errors = []
        batch = []

        for line in lines:
            record = LogParser.parse_line(line)
            if record is None:
                result.skipped_lines += 1
                continue
            if record.timestamp < cutoff:
                result.stale_lines += 1
                continue

            self.annotate(record)
            batch.append(record)
            count += 1
            result.total_entries += 1

            if len(batch) >= self.batch_size:
                errors.extend(self.flush_batch(site_id, batch, result))
                batch = []

        if batch:
            errors.extend(self.flush_batch(site_id, batch, result))
        return count, errors

    def classify(self, record):
        verdict = self.ctx.classifier.classify(
            record.ip, record.url, record.method, record.user_agent, record.status
        )
        record.is_spider = int(verdict.is_spider)
        record.spider_type = verdict.spider_type
        record.spider_name = verdict.spider_name
        record.is_suspicious = int(verdict.is_suspicious)
        record.suspicious_type = verdict.suspicious_type
        record.suspicious_reason = verdict.suspicious_reason
        record.pageview_flag = int(verdict.is_pageview)
        return record

    def annotate(self, record):
        self.classify(record)
        record.domestic_location, record.global_location = self.ctx.geo.resolve(record.ip)

        ua = self.ctx.ua_analyzer.parse_user_agent(record.user_agent)
        record.user_browser = ua['browser']
        record.user_os = ua['os']
        record.user_device = ua['device']
        return record

    def flush_batch(self, site_id, batch, result) -> List[str]:
        errors = []
        for record in batch:
            if not record.is_suspicious:
                continue
            try:
                self.store.record_suspicious_access(
                    site_id, record.ip, record.suspicious_type, record.suspicious_reason, record.timestamp
                )
            except sqlite3.Error as e:
                logger.debug("Recording suspicious IP %s failed: %s", record.ip, e)
                errors.append(f"ledger {record.ip}: {e}")

        try:
            self.store.insert_batch(site_id, batch)
            result.batches.append(len(batch))
        except (sqlite3.Error, OverflowError, ValueError) as e:
            logger.error("Batch of %d records for site %s dropped: %s", len(batch), site_id, e)
            errors.append(f"batch of {len(batch)} records: {e}")
        return errors

    def clean_old_logs(self, now=None, force=False):
        """Раз в сутки в час обслуживания удаляет записи старше retention_days.

        Возвращает число удалённых записей или None, если очистка не запускалась.
        """
        now = now or datetime.now()
        today = now.strftime('%Y-%m-%d')
        if not force:
            if now.hour != self.maintenance_hour or self.last_cleanup_date == today:
                return None

        cutoff = int((now - timedelta(days=self.retention_days)).timestamp())
        deleted, errors = self.store.clean_old_logs(cutoff)
        for error in errors:
            logger.warning("Retention sweep: %s", error)
        self.last_cleanup_date = today
        return deleted

    def reclassify_site(self, site) -> Tuple[int, int]:
        """Перечитывает файлы сайта с начала и обновляет пометки робот/подозрительный"""
        paths, error = self.resolve_log_files(site['log_path'])
        if error:
            raise FileNotFoundError(error)

        self.store.ensure_site_table(site['id'])
        processed = 0
        updated = 0
        for path in paths:
            batch = []
            with open(path, 'rb') as f:
                for line in self._read_lines(f, os.fstat(f.fileno()).st_size):
                    record = LogParser.parse_line(line)
                    if record is None:
                        continue
                    processed += 1
                    batch.append(self.classify(record))
                    if len(batch) >= self.batch_size:
                        updated += self.store.update_annotations(site['id'], batch)
                        batch = []
            if batch:
                updated += self.store.update_annotations(site['id'], batch)
        return processed, updated

    def run_forever(self, stop_event=None, interval=None):
        """Фоновый цикл: проход по логам и очистка, затем пауза на интервал"""
        stop_event = stop_event or threading.Event()
        interval = interval or self.ctx.config.scan_interval
        seconds = interval.total_seconds() if isinstance(interval, timedelta) else float(interval)

        while not stop_event.is_set():
            try:
                for res in self.run_once():
                    if not res.success:
                        logger.warning("Scan of %s failed: %s", res.site_name, res.error)
                self.clean_old_logs()
            except Exception:
                logger.exception("Scan cycle failed")
            stop_event.wait(seconds)
