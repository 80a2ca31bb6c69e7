"""
Cache em memória por (dono, tipo de entidade)
- estados explícitos: NOT_LOADED / LOADING / LOADED
- uma única busca em andamento por chave; os demais chamadores aguardam o mesmo resultado
- clear_all() inicia uma nova época; buscas de épocas anteriores são descartadas
"""
import logging
import threading
from concurrent.futures import Future
from enum import Enum

from utils.exceptions import StaleResult, Unauthenticated

logger = logging.getLogger(__name__)


class CacheState(Enum):
    NOT_LOADED = 'not_loaded'
    LOADING = 'loading'
    LOADED = 'loaded'


class CacheEntry:
    __slots__ = ('state', 'rows', 'future', 'epoch')

    def __init__(self, state, rows=None, future=None, epoch=0):
        self.state = state
        self.rows = rows
        self.future = future
        self.epoch = epoch

    @property
    def is_loaded(self):
        return self.state is CacheState.LOADED

    def __repr__(self):
        size = len(self.rows) if self.rows is not None else None
        return f"CacheEntry({self.state.value}, rows={size})"


NOT_LOADED = CacheEntry(CacheState.NOT_LOADED)


class ScopedCache:

    def __init__(self):
        self._entries = {}
        self._lock = threading.Lock()
        self._epoch = 0

    @property
    def epoch(self):
        return self._epoch

    def get(self, owner_id, entity_type):
        """Entrada atual; NOT_LOADED quando ausente"""
        with self._lock:
            return self._entries.get((owner_id, entity_type), NOT_LOADED)

    def rows(self, owner_id, entity_type):
        entry = self.get(owner_id, entity_type)
        return list(entry.rows) if entry.is_loaded else None

    def put(self, owner_id, entity_type, rows):
        with self._lock:
            self._entries[(owner_id, entity_type)] = CacheEntry(
                CacheState.LOADED, rows=list(rows), epoch=self._epoch
            )

    def invalidate(self, owner_id, entity_type):
        with self._lock:
            if self._entries.pop((owner_id, entity_type), None) is not None:
                logger.debug(f"Cache invalidado: {entity_type} de {owner_id}")

    def clear_all(self):
        with self._lock:
            self._entries.clear()
            self._epoch += 1
        logger.info("Limpando cache de dados...")

    def fetch_if_absent(self, owner_id, entity_type, loader):
        """Retorna a listagem em cache ou executa loader() uma única vez por chave"""
        if not owner_id:
            raise Unauthenticated()

        key = (owner_id, entity_type)
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.is_loaded:
                return list(entry.rows)
            if entry is not None and entry.state is CacheState.LOADING:
                future = entry.future
                leader = False
            else:
                future = Future()
                entry = CacheEntry(CacheState.LOADING, future=future, epoch=self._epoch)
                self._entries[key] = entry
                leader = True

        if not leader:
            logger.debug(f"Aguardando carregamento de {entity_type}...")
            return list(future.result())

        try:
            rows = list(loader())
        except BaseException as e:
            with self._lock:
                if self._entries.get(key) is entry:
                    del self._entries[key]
            future.set_exception(e)
            raise

        with self._lock:
            stale = entry.epoch != self._epoch
            if not stale and self._entries.get(key) is entry:
                self._entries[key] = CacheEntry(CacheState.LOADED, rows=rows, epoch=entry.epoch)

        if stale:
            logger.warning(f"Resultado de {entity_type} para {owner_id} descartado: dono mudou durante a busca")
            error = StaleResult(owner_id)
            future.set_exception(error)
            raise error

        future.set_result(rows)
        return list(rows)
