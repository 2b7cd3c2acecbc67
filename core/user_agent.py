import re

UNKNOWN = 'Unknown'


class UserAgentAnalyzer:
    """Анализатор User-Agent строк: браузер, ОС, тип устройства"""

    BOT_KEYWORDS = ('bot', 'crawler', 'spider', 'scraper', 'curl', 'wget', 'python-requests')
    MOBILE_KEYWORDS = ('mobile', 'android', 'iphone', 'ipod', 'windows phone')
    TABLET_KEYWORDS = ('tablet', 'ipad')

    # Порядок важен: Edge и Opera содержат 'chrome', Chrome содержит 'safari'
    BROWSER_RULES = (
        ('Edge', re.compile(r'edg(?:e|a|ios)?/')),
        ('Opera', re.compile(r'(?:opera|opr)/')),
        ('WeChat', re.compile(r'micromessenger/')),
        ('Yandex', re.compile(r'yabrowser/')),
        ('Samsung Internet', re.compile(r'samsungbrowser/')),
        ('Firefox', re.compile(r'(?:firefox|fxios)/')),
        ('Chrome', re.compile(r'(?:chrome|crios)/')),
        ('Safari', re.compile(r'version/[\d.]+.*safari/')),
        ('IE', re.compile(r'msie |trident/')),
    )

    OS_RULES = (
        ('Windows Phone', ('windows phone',)),
        ('Windows', ('windows',)),
        ('Android', ('android',)),
        ('iOS', ('iphone', 'ipad', 'ipod')),
        ('macOS', ('mac os', 'macintosh')),
        ('Linux', ('linux', 'x11')),
    )

    @classmethod
    def parse_user_agent(cls, ua_string):
        """Возвращает {'browser', 'os', 'device'}"""
        if not ua_string or ua_string == '-':
            return {'browser': UNKNOWN, 'os': UNKNOWN, 'device': UNKNOWN}

        ua_lower = ua_string.lower()
        return {
            'browser': cls._browser(ua_lower),
            'os': cls._os(ua_lower),
            'device': cls._device(ua_lower),
        }

    @classmethod
    def _browser(cls, ua_lower):
        for name, pattern in cls.BROWSER_RULES:
            if pattern.search(ua_lower):
                return name
        return 'Other'

    @classmethod
    def _os(cls, ua_lower):
        for name, keywords in cls.OS_RULES:
            if any(k in ua_lower for k in keywords):
                return name
        return 'Other'

    @classmethod
    def _device(cls, ua_lower):
        if any(k in ua_lower for k in cls.TABLET_KEYWORDS):
            return 'Tablet'
        if any(k in ua_lower for k in cls.MOBILE_KEYWORDS):
            # Android без 'mobile' считается планшетом
            if 'android' in ua_lower and 'mobile' not in ua_lower:
                return 'Tablet'
            return 'Mobile'
        if any(k in ua_lower for k in cls.BOT_KEYWORDS):
            return 'Bot'
        return 'Desktop'
