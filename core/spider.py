"""Определение поисковых роботов по диапазонам IP и User-Agent"""

import ipaddress

SPIDER_TYPE_UNKNOWN = 'unknown'

# Тип робота -> отображаемое имя
SPIDER_NAMES = {
    'Googlebot': 'Google',
    'Baiduspider': 'Baidu',
    'Bingbot': 'Bing',
    'Yandexbot': 'Yandex',
    'Sogou': 'Sogou',
    'Sosospider': 'Soso',
    '360Spider': '360 Search',
    'Bytespider': 'Toutiao',
    'SmSpider': 'Shenma',
    'ClaudeBot': 'Claude',
    'GPTBot': 'ChatGPT',
    'Amazonbot': 'Amazon',
    'facebookexternalhit': 'Facebook',
    'MetaBot': 'Meta',
    'Claude-User': 'Claude',
    'ChatGPT-User': 'ChatGPT',
    'OAI-SearchBot': 'OpenAI',
    'facebookcatalog': 'Facebook',
    'meta-webindexer': 'Meta',
    'meta-externalads': 'Meta',
    'meta-externalagent': 'Meta',
    'meta-externalfetcher': 'Meta',
    'DuckDuckBot': 'DuckDuckGo',
    'AhrefsBot': 'Ahrefs',
    'SemrushBot': 'Semrush',
    'PetalBot': 'Huawei Petal',
    'Applebot': 'Apple',
    'Twitterbot': 'Twitter',
    'LinkedInBot': 'LinkedIn',
    'Pinterest': 'Pinterest',
    'Slurp': 'Yahoo',
    'MJ12bot': 'Majestic',
    'DotBot': 'DotBot',
    'SeznamBot': 'Seznam',
    'AspiegelBot': 'Aspiegel',
    'YisouSpider': 'Yisou',
    'Claude-SearchBot': 'Claude',
}

# Порядок важен: первое совпадение определяет робота
SPIDER_USER_AGENTS = (
    'Googlebot',
    'Googlebot-Image',
    'Googlebot-Mobile',
    'Baiduspider',
    'Baiduspider-image',
    'Baiduspider-mobile',
    'Bingbot',
    'MSNBot',
    'Yandexbot',
    'YandexImages',
    'Sogou web spider',
    'Sogou inst spider',
    'Sosospider',
    '360Spider',
    '360Search',
    'Bytespider',
    'SmSpider',
    'Slurp',
    'DuckDuckBot',
    'AhrefsBot',
    'SemrushBot',
    'MJ12bot',
    'DotBot',
    'SeznamBot',
    'PetalBot',
    'AspiegelBot',
    'Amazonbot',
    'facebookexternalhit',
    'facebookcatalog',
    'meta-webindexer',
    'meta-externalads',
    'meta-externalagent',
    'meta-externalfetcher',
    'Twitterbot',
    'LinkedInBot',
    'Pinterest',
    'Applebot',
    'ClaudeBot',
    'Claude-User',
    'Claude-SearchBot',
    'OAI-SearchBot',
    'ChatGPT-User',
    'GPTBot',
)

# Токен (в нижнем регистре) -> тип робота; проверяется по порядку
_UA_TYPE_RULES = (
    (('googlebot',), 'Googlebot'),
    (('baiduspider',), 'Baiduspider'),
    (('bingbot', 'msnbot'), 'Bingbot'),
    (('yandex',), 'Yandexbot'),
    (('sogou',), 'Sogou'),
    (('sosospider',), 'Sosospider'),
    (('360spider', '360search'), '360Spider'),
    (('bytespider',), 'Bytespider'),
    (('smspider', 'yisouspider'), 'SmSpider'),
    (('duckduckbot',), 'DuckDuckBot'),
    (('ahrefsbot',), 'AhrefsBot'),
    (('semrushbot',), 'SemrushBot'),
    (('petalbot',), 'PetalBot'),
    (('applebot',), 'Applebot'),
    (('amazonbot',), 'Amazonbot'),
    (('facebookexternalhit',), 'facebookexternalhit'),
    (('facebookcatalog',), 'facebookcatalog'),
    (('meta-webindexer',), 'meta-webindexer'),
    (('meta-externalads',), 'meta-externalads'),
    (('meta-externalagent',), 'meta-externalagent'),
    (('meta-externalfetcher',), 'meta-externalfetcher'),
    (('claudebot',), 'ClaudeBot'),
    (('claude-user',), 'Claude-User'),
    (('claude-searchbot',), 'Claude-SearchBot'),
    (('oai-searchbot',), 'OAI-SearchBot'),
    (('chatgpt-user',), 'ChatGPT-User'),
    (('gptbot',), 'GPTBot'),
    (('slurp',), 'Slurp'),
    (('mj12bot',), 'MJ12bot'),
    (('dotbot',), 'DotBot'),
    (('seznambot',), 'SeznamBot'),
    (('aspiegelbot',), 'AspiegelBot'),
    (('twitterbot',), 'Twitterbot'),
    (('linkedinbot',), 'LinkedInBot'),
    (('pinterest',), 'Pinterest'),
)

SPIDER_CIDRS = (
    '66.249.64.0/19',
    '66.249.88.0/24',
    '66.249.92.0/24',
    '203.208.60.0/24',
    '210.242.125.0/24',
    '220.181.38.0/24',
    '123.125.71.0/24',
    '40.77.167.0/24',
    '52.167.144.0/20',
    '77.88.0.0/18',
    '87.250.0.0/16',
    '37.9.0.0/20',
    '37.140.128.0/18',
    '5.10.69.0/24',
    '5.10.70.0/24',
    '106.11.0.0/16',
    '110.242.68.0/24',
    '220.181.108.0/24',
)

# Уточнение робота внутри известных сетей: (начало, конец, тип)
_NAMED_IP_RANGES = (
    ('66.249.64.0', '66.249.95.255', 'Googlebot'),
    ('203.208.60.0', '203.208.60.255', 'Googlebot'),
    ('123.125.71.0', '123.125.71.255', 'Baiduspider'),
    ('210.242.125.0', '210.242.125.255', 'Baiduspider'),
    ('220.181.38.0', '220.181.38.255', 'Baiduspider'),
)


def _ip_to_number(ip):
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return 0
    if addr.version != 4:
        return 0
    return int(addr)


class SpiderDetector:
    """Детектор роботов. Таблицы собираются один раз при создании."""

    def __init__(self, cidrs=SPIDER_CIDRS, user_agents=SPIDER_USER_AGENTS):
        self.networks = [ipaddress.ip_network(c, strict=False) for c in cidrs]
        self.user_agents = [ua.lower() for ua in user_agents]
        self.named_ranges = [
            (_ip_to_number(start), _ip_to_number(end), spider_type)
            for start, end, spider_type in _NAMED_IP_RANGES
        ]

    def detect(self, ip, user_agent):
        """Возвращает (is_spider, spider_type, display_name)"""
        spider_type = self.detect_by_ip(ip)
        if spider_type == SPIDER_TYPE_UNKNOWN:
            spider_type = self.detect_by_user_agent(user_agent)

        if spider_type == SPIDER_TYPE_UNKNOWN:
            return False, SPIDER_TYPE_UNKNOWN, 'unknown'
        return True, spider_type, SPIDER_NAMES.get(spider_type, 'unknown')

    def detect_by_ip(self, ip):
        try:
            addr = ipaddress.ip_address(ip)
        except ValueError:
            return SPIDER_TYPE_UNKNOWN

        for network in self.networks:
            if addr.version == network.version and addr in network:
                return self._identify_by_ip(addr)
        return SPIDER_TYPE_UNKNOWN

    def _identify_by_ip(self, addr):
        number = int(addr)
        for start, end, spider_type in self.named_ranges:
            if start <= number <= end:
                return spider_type
        return SPIDER_TYPE_UNKNOWN

    def detect_by_user_agent(self, user_agent):
        ua_lower = (user_agent or '').lower()
        if not ua_lower:
            return SPIDER_TYPE_UNKNOWN

        for token in self.user_agents:
            if token in ua_lower:
                return self._identify_by_token(token)
        return SPIDER_TYPE_UNKNOWN

    @staticmethod
    def _identify_by_token(token):
        for needles, spider_type in _UA_TYPE_RULES:
            if any(n in token for n in needles):
                return spider_type
        return SPIDER_TYPE_UNKNOWN


def spider_list():
    """Список известных роботов для UI"""
    return [{'type': t, 'name': n} for t, n in sorted(SPIDER_NAMES.items())]
