"""
Contexto da aplicação: monta os serviços uma vez por processo e os injeta uns nos outros
"""
import logging
import os
from datetime import datetime

from utils.constants import CIVIL_TIMEZONE, PERSISTENT_STORE_FILENAME
from .cache_service import ScopedCache
from .collection_service import SessionCollection, SubjectCollection
from .date_service import DateClassifier
from .document_store import DocumentStore
from .identity_service import IdentityProvider
from .mail_service import ConsoleMailer
from .schedule_service import ScheduleService
from .session_controller import SessionController
from .storage_service import JsonFileStore, MemoryStore
from .sweeper import StorageSweeper

logger = logging.getLogger(__name__)


class AppContext:

    def __init__(self, config, clock=None, persistent=None, volatile=None, document_store=None, mailer=None):
        storage_dir = config.get('STORAGE_DIR')
        self.classifier = DateClassifier(config.get('CIVIL_TIMEZONE', CIVIL_TIMEZONE), clock=clock)
        self.persistent = persistent if persistent is not None else JsonFileStore(
            os.path.join(storage_dir, PERSISTENT_STORE_FILENAME)
        )
        self.volatile = volatile if volatile is not None else MemoryStore()
        self.documents = document_store or DocumentStore()
        self.subjects = SubjectCollection(self.documents)
        self.sessions = SessionCollection(self.documents)
        self.cache = ScopedCache()
        self.sweeper = StorageSweeper(
            self.persistent, self.volatile,
            local_db_dir=config.get('LOCAL_DB_DIR') or (os.path.join(storage_dir, 'local_databases') if storage_dir else None)
        )
        self.identity = IdentityProvider(self.persistent)
        self.mailer = mailer or ConsoleMailer()
        self.controller = SessionController(self.identity, self.sweeper, self.cache)
        self.schedule = ScheduleService(
            self.controller, self.cache, self.subjects, self.sessions,
            self.classifier, self.persistent, self.volatile
        )

    def init_app(self, app):
        app.extensions['cms'] = self
        return self


def foreign_owner_sweep_job(app):
    """Varredura periódica de chaves de outros donos (APScheduler)"""
    ctx = app.extensions['cms']
    with app.app_context():
        owner_id = ctx.controller.current_owner
        if not owner_id:
            return None
        logger.info(f"[{datetime.now()}] Iniciando varredura de dados de outros usuários...")
        report = ctx.sweeper.sweep_foreign_owners(owner_id)
        if report.scan_failed:
            ctx.controller.force_sign_out()
        elif report.found:
            logger.info(f"[{datetime.now()}] Varredura removeu {len(report.removed)} chave(s)")
        return report
