"""
Cliente das coleções remotas (disciplinas e aulas)
Envoltório tipado sobre as primitivas do DocumentStore; a ordenação é feita aqui,
depois da busca, porque o armazenamento não garante índice para ordenar.
"""
import logging

from utils.constants import DEFAULT_SESSION_STATUS, SESSIONS, SUBJECTS
from utils.exceptions import NotFound, Unauthenticated
from utils.helpers import sort_sessions, sort_subjects, utcnow

logger = logging.getLogger(__name__)


class CollectionClient:
    collection = None
    label = None

    def __init__(self, store):
        self.store = store

    def normalize(self, rows):
        return rows

    def defaults(self):
        return {}

    def list(self, owner_id):
        if not owner_id:
            raise Unauthenticated()
        rows = self.store.query(self.collection, {'owner_id': owner_id})
        logger.info(f"{len(rows)} {self.label} carregadas para {owner_id}")
        return self.normalize(rows)

    def create(self, owner_id, fields):
        if not owner_id:
            raise Unauthenticated()
        now = utcnow()
        document = {**self.defaults(), **fields, 'owner_id': owner_id, 'created_at': now, 'updated_at': now}
        document.pop('id', None)
        document_id = self.store.add(self.collection, document)
        created = self.store.get(self.collection, document_id)
        logger.info(f"Registro {document_id} criado em {self.collection}")
        return created

    def update(self, document_id, fields):
        """Mescla os campos; um id inexistente é NotFound"""
        if self.store.get(self.collection, document_id) is None:
            raise NotFound(f"{self.label.capitalize()}: registro {document_id} não encontrado")
        changes = {name: value for name, value in fields.items() if name not in ('id', 'owner_id', 'created_at')}
        changes['updated_at'] = utcnow()
        self.store.set(self.collection, document_id, changes, merge=True)
        return self.store.get(self.collection, document_id)

    def delete(self, document_id):
        self.store.delete(self.collection, document_id)
        return True


class SubjectCollection(CollectionClient):
    collection = SUBJECTS
    label = 'disciplinas'

    def normalize(self, rows):
        return sort_subjects(rows)


class SessionCollection(CollectionClient):
    collection = SESSIONS
    label = 'aulas'

    def normalize(self, rows):
        return sort_sessions(rows)

    def defaults(self):
        return {'status': DEFAULT_SESSION_STATUS, 'notes': ''}
