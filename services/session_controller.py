"""
Controlador da sessão do usuário
Único responsável por "quem está logado"; dispara a varredura de isolamento
nas transições de login/logout e limpa o cache.

Estados: UNKNOWN -> AUTHENTICATED(dono) | UNAUTHENTICATED
"""
import json
import logging
import threading
from enum import Enum

from utils.exceptions import StorageSweepFailed, StorageUnavailable, Unauthenticated
from .sweeper import owner_key

logger = logging.getLogger(__name__)


class SessionState(Enum):
    UNKNOWN = 'unknown'
    AUTHENTICATED = 'authenticated'
    UNAUTHENTICATED = 'unauthenticated'


class SessionController:

    def __init__(self, identity, sweeper, cache):
        self.identity = identity
        self.sweeper = sweeper
        self.cache = cache
        self.state = SessionState.UNKNOWN
        self.current_owner = None
        self.principal = None
        self._unsubscribe = None
        self._lock = threading.RLock()

    @property
    def is_authenticated(self):
        return self.state is SessionState.AUTHENTICATED

    def start(self):
        """Início do app: assina as mudanças de identidade e resolve a identidade persistida"""
        with self._lock:
            self.state = SessionState.UNKNOWN
            if self._unsubscribe is None:
                self._unsubscribe = self.identity.on_identity_change(self.handle_identity_change)
        try:
            self.identity.resolve()
        except Exception as e:
            logger.error(f"Erro ao resolver identidade: {e}", exc_info=True)
            self.force_sign_out()

    def stop(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def require_owner(self):
        with self._lock:
            if not self.is_authenticated or not self.current_owner:
                raise Unauthenticated()
            return self.current_owner

    # --- Ouvinte de identidade ---
    def handle_identity_change(self, principal):
        with self._lock:
            try:
                if principal is not None:
                    self._signed_in(principal)
                else:
                    self._signed_out()
            except Exception as e:
                logger.error(f"Erro na mudança de identidade: {e}", exc_info=True)
                self.force_sign_out()

    def _signed_in(self, principal):
        owner_id = principal.owner_id
        previous = self.sweeper.active_owner()
        if previous and previous != owner_id:
            report = self.sweeper.sweep_on_owner_change(previous, owner_id)
            if report.scan_failed:
                raise StorageSweepFailed()

        foreign = self.sweeper.sweep_foreign_owners(owner_id)
        if foreign.scan_failed:
            raise StorageSweepFailed()

        # buscas em andamento do dono anterior passam a ser descartadas
        self.cache.clear_all()
        self.sweeper.record_active_owner(owner_id)
        self.state = SessionState.AUTHENTICATED
        self.current_owner = owner_id
        self.principal = principal
        self._store_user_data(principal)
        logger.info(f"Usuário autenticado: {owner_id}")

    def _signed_out(self):
        previous = self.sweeper.active_owner() or self.current_owner
        if previous:
            report = self.sweeper.sweep_owner(previous)
            if report.scan_failed:
                raise StorageSweepFailed()
        self.cache.clear_all()
        self.sweeper.clear_active_owner()
        self._set_unauthenticated()
        logger.info("Usuário desconectado")

    def _store_user_data(self, principal):
        try:
            self.sweeper.persistent.set(
                owner_key(principal.owner_id, 'user_data'), json.dumps(principal.to_dict())
            )
        except Exception as e:
            logger.warning(f"Erro ao salvar dados do usuário {principal.owner_id}: {e}")

    def _set_unauthenticated(self):
        self.state = SessionState.UNAUTHENTICATED
        self.current_owner = None
        self.principal = None

    def force_sign_out(self):
        """Caminho de emergência: limpa tudo para não misturar dados de dois donos"""
        with self._lock:
            self.sweeper.purge_all()
            self.cache.clear_all()
            self._set_unauthenticated()
        logger.warning("Sessão encerrada à força após falha; armazenamento local limpo")

    # --- Ações do usuário ---
    def sign_in(self, email, secret):
        """Autentica; a transição acontece no ouvinte de identidade"""
        try:
            principal = self.identity.sign_in(email, secret)
        except StorageUnavailable:
            # armazenamento local ilegível: limpa para a próxima tentativa
            self.force_sign_out()
            raise
        if not self.is_authenticated or self.current_owner != principal.owner_id:
            self.identity.discard(principal)
            raise Unauthenticated("Não foi possível iniciar a sessão. Tente novamente.")
        return principal

    def sign_up(self, email, secret, profile=None):
        return self.identity.sign_up(email, secret, profile)

    def sign_out(self):
        """Limpeza local primeiro; depois logout remoto; sempre termina desconectado"""
        with self._lock:
            owner_id = self.current_owner
            self.cache.clear_all()
            if owner_id:
                report = self.sweeper.sweep_owner(owner_id)
                if report.scan_failed:
                    logger.warning(f"Varredura de {owner_id} falhou no logout; limpando todo o armazenamento local")
                    self.sweeper.purge_all()
        try:
            self.identity.sign_out()
        except Exception as e:
            logger.error(f"Erro ao fazer logout remoto: {e}", exc_info=True)
            self.sweeper.purge_all()
        finally:
            with self._lock:
                if self.state is not SessionState.UNAUTHENTICATED:
                    self.sweeper.clear_active_owner()
                    self._set_unauthenticated()

    def refresh_principal(self, principal):
        with self._lock:
            if self.is_authenticated and principal.owner_id == self.current_owner:
                self.principal = principal
                self._store_user_data(principal)

    def snapshot(self):
        return {
            'state': self.state.value,
            'owner_id': self.current_owner,
            'user': self.principal.to_dict() if self.principal else None
        }
