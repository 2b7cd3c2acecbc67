import logging
from dataclasses import dataclass

from .classifier import RequestClassifier
from .db import RecordStore
from .geoip import GeoResolver
from .scan_state import ScanStateStore, STATE_FILENAME
from .user_agent import UserAgentAnalyzer

logger = logging.getLogger(__name__)

DB_FILENAME = 'nixvis.db'


@dataclass
class AppContext:
    """Всё, что создаётся один раз при старте и дальше только читается"""
    config: object
    store: RecordStore
    state_store: ScanStateStore
    classifier: RequestClassifier
    geo: GeoResolver
    ua_analyzer: UserAgentAnalyzer

    @classmethod
    def create(cls, cfg, geo=None):
        """Собирает контекст; StoreInitError, если БД не открывается"""
        data_dir = cfg.data_dir
        data_dir.mkdir(parents=True, exist_ok=True)

        store = RecordStore(data_dir / DB_FILENAME)
        store.connect(site['id'] for site in cfg.sites())

        ctx = cls(
            config=cfg,
            store=store,
            state_store=ScanStateStore(data_dir / STATE_FILENAME),
            classifier=RequestClassifier.from_config(cfg),
            geo=geo if geo is not None else GeoResolver.from_config(cfg),
            ua_analyzer=UserAgentAnalyzer(),
        )
        logger.info("Context ready: %d site(s), data dir %s", len(cfg.sites()), data_dir)
        return ctx

    def close(self):
        self.geo.close()
        self.store.close()
