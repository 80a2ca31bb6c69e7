"""
Varredura de isolamento do armazenamento local
Garante que só as chaves do dono ativo permaneçam nos armazenamentos do cliente.
Nenhuma operação pública lança exceção: falhas entram no SweepReport.
"""
import logging
import os
from dataclasses import dataclass, field

from utils.constants import (
    ACTIVE_OWNER_KEY, GLOBAL_OWNER_SEGMENT, LOCAL_DATABASE_PREFIXES, STORAGE_TAG
)

logger = logging.getLogger(__name__)


def owner_key(owner_id, name):
    """Chave com escopo de dono: cms_<dono>_<nome>"""
    return f"{STORAGE_TAG}{owner_id}_{name}"


def key_owner(key):
    """Segmento de dono de uma chave marcada, ou None se a chave não é marcada"""
    if not isinstance(key, str) or not key.startswith(STORAGE_TAG):
        return None
    return key[len(STORAGE_TAG):].split('_', 1)[0]


def is_foreign_key(key, owner_id):
    segment = key_owner(key)
    if segment is None or segment == GLOBAL_OWNER_SEGMENT:
        return False
    return not owner_id or segment != owner_id


@dataclass
class SweepReport:
    found: set = field(default_factory=set)
    removed: set = field(default_factory=set)
    failed: set = field(default_factory=set)
    remaining: set = field(default_factory=set)
    scan_failed: bool = False
    volatile_cleared: bool = False

    @property
    def ok(self):
        return not self.scan_failed and not self.remaining


class StorageSweeper:

    def __init__(self, persistent, volatile, local_db_dir=None):
        self.persistent = persistent
        self.volatile = volatile
        self.local_db_dir = local_db_dir

    def _stores(self):
        return (('persistent', self.persistent), ('volatile', self.volatile))

    # --- Marcador do dono ativo ---
    def record_active_owner(self, owner_id):
        try:
            self.persistent.set(ACTIVE_OWNER_KEY, owner_id)
        except Exception as e:
            logger.error(f"Erro ao registrar dono ativo {owner_id}: {e}")

    def active_owner(self):
        try:
            return self.persistent.get(ACTIVE_OWNER_KEY)
        except Exception as e:
            logger.error(f"Erro ao ler dono ativo: {e}")
            return None

    def clear_active_owner(self):
        try:
            self.persistent.remove(ACTIVE_OWNER_KEY)
        except Exception as e:
            logger.error(f"Erro ao remover marcador de dono ativo: {e}")

    # --- Remoção ---
    def _remove_keys(self, store_name, store, keys, report):
        for key in sorted(keys):
            try:
                store.remove(key)
                report.removed.add(key)
                logger.info(f"Removido {store_name}: {key}")
            except Exception as e:
                report.failed.add(key)
                logger.warning(f"Erro ao remover {store_name} {key}: {e}")

    def _scan(self, store, predicate):
        return {key for key in store.keys() if predicate(key)}

    def _clear_volatile(self, report):
        try:
            self.volatile.clear()
            report.volatile_cleared = True
            logger.info("Armazenamento volátil completamente limpo")
        except Exception as e:
            logger.warning(f"Erro ao limpar armazenamento volátil: {e}")

    def sweep_on_owner_change(self, previous_owner_id, new_owner_id):
        """Na troca de dono, remove do armazenamento persistente tudo que não é do novo dono"""
        report = SweepReport()
        if not previous_owner_id or previous_owner_id == new_owner_id:
            return report

        logger.info(f"Dono mudou de {previous_owner_id} para {new_owner_id}; limpando dados locais")
        try:
            report.found = self._scan(self.persistent, lambda key: is_foreign_key(key, new_owner_id))
        except Exception as e:
            report.scan_failed = True
            logger.error(f"Erro ao listar armazenamento persistente: {e}", exc_info=True)
            return report

        self._remove_keys('persistent', self.persistent, report.found, report)
        self._clear_volatile(report)
        report.remaining = set(report.failed)
        return report

    def sweep_owner(self, owner_id):
        """Remove as chaves de um dono específico (saída do usuário)"""
        report = SweepReport()
        if not owner_id:
            return report
        for store_name, store in self._stores():
            try:
                keys = self._scan(store, lambda key: key_owner(key) == owner_id)
            except Exception as e:
                report.scan_failed = True
                logger.error(f"Erro ao listar {store_name}: {e}", exc_info=True)
                continue
            report.found |= keys
            self._remove_keys(store_name, store, keys, report)
        report.remaining = set(report.failed)
        return report

    def sweep_foreign_owners(self, current_owner_id):
        """Remove chaves de outros donos e confirma com uma única nova leitura"""
        report = SweepReport()

        def predicate(key):
            return is_foreign_key(key, current_owner_id)

        try:
            found = {name: self._scan(store, predicate) for name, store in self._stores()}
        except Exception as e:
            report.scan_failed = True
            logger.error(f"Erro ao listar armazenamento local: {e}", exc_info=True)
            return report

        for name, keys in found.items():
            report.found |= keys
        if not report.found:
            return report

        logger.warning(f"Encontrados dados de outro usuário: {sorted(report.found)}")
        for store_name, store in self._stores():
            self._remove_keys(store_name, store, found[store_name], report)

        try:
            for _, store in self._stores():
                report.remaining |= self._scan(store, predicate)
        except Exception as e:
            report.scan_failed = True
            logger.error(f"Erro ao confirmar varredura: {e}", exc_info=True)
            return report

        if report.remaining:
            logger.error(f"Chaves de outros usuários permanecem após a varredura: {sorted(report.remaining)}")
        return report

    # --- Emergência ---
    def purge_all(self):
        """Remove tudo: armazenamento persistente, volátil e bancos locais do app"""
        logger.warning("LIMPEZA COMPLETA DO ARMAZENAMENTO LOCAL INICIADA")
        report = SweepReport()
        for store_name, store in self._stores():
            try:
                store.clear()
                if store is self.volatile:
                    report.volatile_cleared = True
                logger.info(f"{store_name} completamente limpo")
            except Exception as e:
                logger.warning(f"Erro ao limpar {store_name} ({e}); removendo chave a chave")
                try:
                    keys = set(store.keys())
                except Exception as scan_error:
                    report.scan_failed = True
                    logger.error(f"Erro ao listar {store_name}: {scan_error}")
                    continue
                report.found |= keys
                failed_before = len(report.failed)
                self._remove_keys(store_name, store, keys, report)
                if store is self.volatile and len(report.failed) == failed_before:
                    report.volatile_cleared = True
        self._remove_local_databases(report)
        report.remaining = set(report.failed)
        return report

    def _remove_local_databases(self, report):
        if not self.local_db_dir or not os.path.isdir(self.local_db_dir):
            return
        try:
            names = os.listdir(self.local_db_dir)
        except OSError as e:
            logger.warning(f"Erro ao listar bancos locais: {e}")
            return
        for name in names:
            if not name.lower().startswith(LOCAL_DATABASE_PREFIXES):
                continue
            path = os.path.join(self.local_db_dir, name)
            if not os.path.isfile(path):
                continue
            try:
                os.remove(path)
                report.removed.add(path)
                logger.info(f"Removido banco local: {name}")
            except OSError as e:
                report.failed.add(path)
                logger.warning(f"Erro ao remover banco local {name}: {e}")
