"""Определение подозрительных запросов (сканирование путей, SQLi, XSS)"""

REASON_PATH_SCAN = 'path_scan'
REASON_ADMIN = 'admin'
REASON_SQL_INJECTION = 'sql_injection'
REASON_XSS = 'xss'
REASON_OTHER = 'other'
REASON_STATUS_403 = 'status_403'
REASON_STATUS_429 = 'status_429'

REASON_NAMES = {
    REASON_PATH_SCAN: 'path scan',
    REASON_ADMIN: 'admin probe',
    REASON_SQL_INJECTION: 'SQL injection attempt',
    REASON_XSS: 'XSS attempt',
    REASON_OTHER: 'other suspicious activity',
    REASON_STATUS_403: 'rate-limit/forbidden',
    REASON_STATUS_429: 'rate-limit/forbidden',
}

SENSITIVE_PATHS = (
    '/admin', '/administrator', '/wp-admin', '/phpmyadmin', '/myadmin',
    '/admin.php', '/administrator.php', '/login.php', '/wp-login.php',
    '/user/login', '/api/user/login', '/install.php', '/setup.php',
    '/config.php', '/.env', '/.git', '/.svn', '/web.config', '/.htaccess',
    '/web.xml', '/backup.zip', '/backup.sql', '/database.sql', '/dump.sql',
    '/backup.php', '/shell.php', '/cmd.php', '/eval.php', '/c99.php',
    '/r57.php', '/upload.php', '/upload', '/uploads', '/file.php', '/files',
    '/download.php', '/includes', '/lib', '/vendor', '/node_modules', '/test',
    '/tmp', '/temp', '/cache', '/logs', '/log', '/sql', '/db', '/database',
    '/backup', '/backups', '/bak', '/old', '/config', '/conf', '/settings',
    '/setup', '/install', '/readme', '/readme.txt', '/readme.html',
    '/changelog', '/license', '/license.txt', '/robots.txt', '/sitemap.xml',
    '/crossdomain.xml', '/phpinfo.php', '/info.php', '/test.php', '/dev',
    '/debug', '/trace', '/console', '/_profiler', '/phpunit', '/vendor/bin',
    '/composer.json', '/package.json', '/gulpfile.js', '/webpack.config.js',
    '/.bashrc', '/.ssh', '/config.bak', '/wp-config.php', '/config.php.bak',
    '/old.php', '/index.php.bak', '/index.php~', '/index.php.swp',
)

SQL_INJECTION_TOKENS = (
    'union select', 'union all select', 'or 1=1', 'or 1=1--', "' or '1'='1",
    "' or 1=1--", "admin'--", "admin'#", 'sleep(', 'benchmark(',
    'waitfor delay', 'concat(', 'char(', 'ascii(', 'substring(', 'mid(',
    'load_file(', 'into outfile', 'dumpfile', 'information_schema',
    'pg_sleep(', 'database(', 'user(', 'version(', '@@version', 'xp_cmdshell',
)

XSS_TOKENS = (
    '<script>', '<img src=', 'javascript:', 'onerror=', 'onload=',
    'onmouseover=', 'onclick=', 'alert(', 'document.cookie', 'eval(',
    'expression(', 'fromcharcode',
)

ADMIN_MARKERS = ('/admin', '/wp-admin', '/administrator')
XSS_MARKERS = ('<script',) + XSS_TOKENS


class SuspiciousDetector:
    """Сопоставляет путь запроса со списком подозрительных шаблонов"""

    def __init__(self):
        patterns = SENSITIVE_PATHS + SQL_INJECTION_TOKENS + XSS_TOKENS
        self.patterns = [p.lower() for p in patterns]

    def detect_status(self, status):
        """403/429 всегда подозрительны"""
        if status == 403:
            return True, REASON_STATUS_403, REASON_NAMES[REASON_STATUS_403]
        if status == 429:
            return True, REASON_STATUS_429, REASON_NAMES[REASON_STATUS_429]
        return False, '', ''

    def detect_path(self, url):
        """Возвращает (is_suspicious, reason_type, reason_detail)"""
        url_lower = (url or '').lower()
        for pattern in self.patterns:
            if pattern in url_lower:
                reason_type = self._reason_for(url_lower)
                return True, reason_type, REASON_NAMES[reason_type]
        return False, '', ''

    @staticmethod
    def _reason_for(url_lower):
        # Порядок семейств при совпадении нескольких не гарантируется
        if any(m in url_lower for m in ADMIN_MARKERS):
            return REASON_ADMIN
        if any(t in url_lower for t in SQL_INJECTION_TOKENS):
            return REASON_SQL_INJECTION
        if any(t in url_lower for t in XSS_MARKERS):
            return REASON_XSS
        return REASON_PATH_SCAN


def reason_list():
    return [{'type': t, 'name': n} for t, n in REASON_NAMES.items()]
