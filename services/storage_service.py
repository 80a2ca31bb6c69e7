"""
Armazenamentos chave/valor do cliente
- MemoryStore: volátil, dura o processo (equivalente ao sessionStorage)
- JsonFileStore: persistente em arquivo JSON (equivalente ao localStorage)
"""
import json
import logging
import os
import tempfile
import threading

logger = logging.getLogger(__name__)


class KeyValueStore:
    """Interface mínima usada pela varredura: get/set/remove/keys/clear"""

    def get(self, key, default=None):
        raise NotImplementedError

    def set(self, key, value):
        raise NotImplementedError

    def remove(self, key):
        raise NotImplementedError

    def keys(self):
        raise NotImplementedError

    def clear(self):
        for key in self.keys():
            self.remove(key)


class MemoryStore(KeyValueStore):

    def __init__(self, initial=None):
        self._data = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key, default=None):
        with self._lock:
            return self._data.get(key, default)

    def set(self, key, value):
        with self._lock:
            self._data[key] = value

    def remove(self, key):
        with self._lock:
            self._data.pop(key, None)

    def keys(self):
        with self._lock:
            return list(self._data)

    def clear(self):
        with self._lock:
            self._data.clear()


class JsonFileStore(KeyValueStore):
    """Arquivo JSON reescrito por inteiro a cada alteração (escrita atômica)"""

    def __init__(self, path):
        self.path = path
        self._lock = threading.Lock()

    def _load(self):
        if not os.path.exists(self.path):
            return {}
        with open(self.path, 'r', encoding='utf-8') as f:
            content = f.read()
        if not content.strip():
            return {}
        data = json.loads(content)
        if not isinstance(data, dict):
            raise ValueError(f"Conteúdo inválido em {self.path}")
        return data

    def _save(self, data):
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.cms_', suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def get(self, key, default=None):
        with self._lock:
            return self._load().get(key, default)

    def set(self, key, value):
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def remove(self, key):
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._save(data)

    def keys(self):
        with self._lock:
            return list(self._load())

    def clear(self):
        with self._lock:
            if os.path.exists(self.path):
                os.remove(self.path)
