import argparse
import json
import logging
import signal
import sys
import threading

from config import Config
from core.context import AppContext
from core.db import StoreInitError
from core.ingestor import LogIngestor
from core.spider import spider_list
from core.suspicious import reason_list
from stats.factory import QueryKind, StatsFactory

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s: %(message)s'


def setup_logging(cfg):
    """stdout или <data_dir>/app.log в зависимости от system.log_destination"""
    level = getattr(logging, str(cfg.get('system.log_level', 'INFO')).upper(), logging.INFO)
    if cfg.get('system.log_destination', 'stdout') == 'file':
        cfg.data_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(cfg.data_dir / 'app.log', encoding='utf-8')
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)


def parse_params(pairs):
    params = {}
    for pair in pairs or []:
        if '=' not in pair:
            raise ValueError(f"parameter must look like key=value: {pair}")
        key, value = pair.split('=', 1)
        params[key] = value
    return params


def print_json(data):
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def cmd_scan(ctx, args):
    ingestor = LogIngestor(ctx)
    ok = True
    for res in ingestor.run_once():
        if res.success:
            print(f"{res.site_name} ({res.site_id}): записей {res.total_entries}, "
                  f"пакетов {len(res.batches)}, пропущено строк {res.skipped_lines}, "
                  f"устаревших {res.stale_lines}, {res.duration:.2f} c")
        else:
            ok = False
            print(f"{res.site_name} ({res.site_id}): ошибка: {res.error}")
        for error in res.errors:
            print(f"  - {error}")
    return 0 if ok else 1


def cmd_run(ctx, args):
    ingestor = LogIngestor(ctx)
    stop_event = threading.Event()

    def stop(signum, frame):
        logger.info("Signal %s received, stopping", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, stop)
    signal.signal(signal.SIGTERM, stop)

    print(f"Сканирование каждые {ctx.config.scan_interval}, Ctrl+C для остановки")
    ingestor.run_forever(stop_event)
    return 0


def cmd_clean(ctx, args):
    deleted = LogIngestor(ctx).clean_old_logs(force=True)
    print(f"Удалено записей: {deleted}")
    return 0


def cmd_rescan(ctx, args):
    ingestor = LogIngestor(ctx)
    sites = ctx.config.sites()
    if args.site:
        sites = [s for s in sites if args.site in (s['id'], s['name'])]
        if not sites:
            print(f"Сайт {args.site} не найден в конфигурации")
            return 1

    for site in sites:
        try:
            processed, updated = ingestor.reclassify_site(site)
        except FileNotFoundError as e:
            print(f"{site['name']}: {e}")
            continue
        print(f"{site['name']}: обработано строк {processed}, обновлено записей {updated}")
    return 0


def cmd_query(ctx, args):
    factory = StatsFactory.from_context(ctx)
    params = parse_params(args.param)
    if 'id' not in params:
        params['id'] = resolve_site_id(ctx, args.site)
    result = factory.query_request(args.kind, params)
    print_json(result.to_dict())
    return 0


def cmd_suspicious(ctx, args):
    site_id = resolve_site_id(ctx, args.site)
    print_json(ctx.store.get_suspicious_ips(site_id, args.limit))
    return 0


def cmd_block(ctx, args):
    site_id = resolve_site_id(ctx, args.site)
    blocked = args.command == 'block'
    if not ctx.store.set_blocked(site_id, args.ip, blocked):
        print(f"IP {args.ip} отсутствует в реестре подозрительных адресов")
        return 1
    print(f"IP {args.ip} {'помечен как заблокированный' if blocked else 'разблокирован'}")
    return 0


def resolve_site_id(ctx, site):
    sites = ctx.config.sites()
    if site:
        found = ctx.config.site_by_id(site)
        if found:
            return found['id']
        for s in sites:
            if s['name'] == site:
                return s['id']
        raise ValueError(f"unknown site: {site}")
    if len(sites) == 1:
        return sites[0]['id']
    raise ValueError("several sites configured, use --site")


COMMANDS = {
    'scan': cmd_scan,
    'run': cmd_run,
    'clean': cmd_clean,
    'rescan': cmd_rescan,
    'query': cmd_query,
    'suspicious': cmd_suspicious,
    'block': cmd_block,
    'unblock': cmd_block,
}


def build_parser():
    parser = argparse.ArgumentParser(description='Nginx traffic monitor')
    parser.add_argument('--config', default='config.yaml', help='Path to config.yaml')
    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('scan', help='One incremental pass over all sites')
    sub.add_parser('run', help='Scan periodically until interrupted')
    sub.add_parser('clean', help='Delete records older than retention_days now')

    rescan = sub.add_parser('rescan', help='Re-classify spider/suspicious flags from log files')
    rescan.add_argument('--site', help='Site id or name')

    gen = sub.add_parser('gen-config', help='Write a sample config')
    gen.add_argument('path', nargs='?', default='config.yaml')

    query = sub.add_parser('query', help='Run a stats query and print JSON')
    query.add_argument('kind', choices=[k.value for k in QueryKind])
    query.add_argument('--site', help='Site id or name')
    query.add_argument('--param', '-p', action='append', help='key=value, e.g. timeRange=today')

    suspicious = sub.add_parser('suspicious', help='Show suspicious IP ledger')
    suspicious.add_argument('--site', help='Site id or name')
    suspicious.add_argument('--limit', type=int, default=20)

    for name in ('block', 'unblock'):
        p = sub.add_parser(name, help=f'{name.capitalize()} an IP in the ledger')
        p.add_argument('ip')
        p.add_argument('--site', help='Site id or name')

    sub.add_parser('lists', help='Print known spider types and suspicious reasons')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    if args.command == 'gen-config':
        Config.write_default(args.path)
        print(f"Пример конфигурации записан в {args.path}")
        return 0
    if args.command == 'lists':
        print_json({'spiders': spider_list(), 'reasons': reason_list()})
        return 0

    cfg = Config(args.config)
    setup_logging(cfg)

    problems = cfg.validate()
    for problem in problems:
        logger.warning("Config: %s", problem)
    if not cfg.sites():
        print("В конфигурации нет ни одного сайта")
        return 2

    try:
        ctx = AppContext.create(cfg)
    except StoreInitError as e:
        print(f"Не удалось открыть базу данных: {e}")
        return 2

    try:
        return COMMANDS[args.command](ctx, args)
    except ValueError as e:
        print(f"Ошибка: {e}")
        return 1
    finally:
        ctx.close()


if __name__ == '__main__':
    sys.exit(main())
