import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from urllib.parse import unquote_to_bytes

MAX_STATUS = 999
MAX_BYTES = 2 ** 63 - 1


@dataclass
class LogRecord:
    """Нормализованная запись одного запроса"""
    ip: str
    timestamp: int
    method: str
    url: str
    status: int
    bytes_sent: int
    referer: str
    user_agent: str = ''
    user_browser: str = 'Unknown'
    user_os: str = 'Unknown'
    user_device: str = 'Unknown'
    domestic_location: str = 'unknown'
    global_location: str = 'unknown'
    pageview_flag: int = 0
    is_spider: int = 0
    spider_type: str = ''
    spider_name: str = ''
    is_suspicious: int = 0
    suspicious_type: str = ''
    suspicious_reason: str = ''


class LogParser:
    """Парсер access-логов (Nginx combined)"""

    # $remote_addr - $remote_user [$time_local] "$request" $status $body_bytes_sent "$http_referer" "$http_user_agent"
    NGINX_PATTERN = re.compile(
        r'^(\S+) - '              # IP
        r'(\S+) '                 # remote user
        r'\[([^\]]+)\] '          # timestamp
        r'"(\S+) '                # method
        r'([^"]+) '               # URL
        r'HTTP/\d\.\d" '          # protocol
        r'(\d+) '                 # status
        r'(\d+) '                 # size
        r'"([^"]*)" '             # referer
        r'"([^"]*)"'              # user-agent
    )

    TIMESTAMP_FORMAT = '%d/%b/%Y:%H:%M:%S %z'

    _BAD_ESCAPE = re.compile(r'%(?![0-9a-fA-F]{2})')

    @staticmethod
    def decode_component(value):
        """Percent-decoding ('+' -> пробел); при ошибке возвращает исходную строку."""
        if '%' not in value and '+' not in value:
            return value
        if LogParser._BAD_ESCAPE.search(value):
            return value
        try:
            return unquote_to_bytes(value.replace('+', ' ')).decode('utf-8')
        except UnicodeDecodeError:
            return value

    @staticmethod
    def _parse_timestamp(timestamp_str):
        try:
            return int(datetime.strptime(timestamp_str, LogParser.TIMESTAMP_FORMAT).timestamp())
        except ValueError:
            return None

    @staticmethod
    def parse_line(line) -> Optional[LogRecord]:
        """Парсит одну строку лога; None, если строка не соответствует формату"""
        match = LogParser.NGINX_PATTERN.match(line)
        if not match:
            return None

        ip, _remote_user, timestamp_str, method, url, status, size, referer, user_agent = match.groups()
        timestamp = LogParser._parse_timestamp(timestamp_str)
        if timestamp is None:
            return None

        status, size = int(status), int(size)
        # значения вне INTEGER SQLite не сохранить
        if status > MAX_STATUS or size > MAX_BYTES:
            return None

        return LogRecord(
            ip=ip,
            timestamp=timestamp,
            method=method,
            url=LogParser.decode_component(url),
            status=status,
            bytes_sent=size,
            referer=LogParser.decode_component(referer),
            user_agent=user_agent,
        )
