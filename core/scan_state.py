import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

STATE_FILENAME = 'nginx_scan_state.json'


class ScanStateStore:
    """Состояние инкрементального сканирования: {site_id: {'files': {path: {last_offset, last_size}}}}"""

    def __init__(self, state_path):
        self.state_path = Path(state_path)

    def load(self):
        """Никогда не падает: при отсутствии или порче файла возвращает пустое состояние"""
        if not self.state_path.exists():
            return {}

        try:
            with open(self.state_path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Cannot read scan state %s: %s", self.state_path, e)
            return {}

        if not isinstance(raw, dict):
            logger.error("Scan state %s has unexpected shape, starting fresh", self.state_path)
            return {}

        state = {}
        for site_id, site_state in raw.items():
            files = site_state.get('files') if isinstance(site_state, dict) else None
            if not isinstance(files, dict):
                continue
            clean = {}
            for path, fs in files.items():
                try:
                    offset = int(fs['last_offset'])
                    size = int(fs['last_size'])
                except (TypeError, KeyError, ValueError):
                    continue
                if 0 <= offset <= size:
                    clean[path] = {'last_offset': offset, 'last_size': size}
            state[site_id] = {'files': clean}
        return state

    def save(self, state):
        """Best-effort запись через временный файл; False при ошибке"""
        tmp_path = self.state_path.with_name(self.state_path.name + '.tmp')
        try:
            self.state_path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(state, f)
            os.replace(tmp_path, self.state_path)
        except (OSError, TypeError, ValueError) as e:
            logger.error("Saving scan state to %s failed: %s", self.state_path, e)
            return False
        return True


def determine_start_offset(state, site_id, path, current_size):
    """0 без истории или при ротации (файл стал меньше), иначе сохранённое смещение"""
    file_state = state.get(site_id, {}).get('files', {}).get(path)
    if file_state is None:
        return 0
    if current_size < file_state['last_size']:
        logger.info("Log file %s of site %s was rotated, scanning from the start", path, site_id)
        return 0
    return file_state['last_offset']


def update_file_state(state, site_id, path, current_size):
    site_state = state.setdefault(site_id, {'files': {}})
    site_state.setdefault('files', {})[path] = {
        'last_offset': current_size,
        'last_size': current_size,
    }
