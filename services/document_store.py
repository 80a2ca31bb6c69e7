"""
Armazenamento de documentos sobre SQLAlchemy
Primitivas por coleção: query / add / set(merge) / delete, com documentos em dict
"""
import logging
import uuid

from sqlalchemy.exc import SQLAlchemyError

from models import db, Subject, ClassSession
from utils.constants import SESSIONS, SUBJECTS
from utils.exceptions import RemoteUnavailable

logger = logging.getLogger(__name__)

COLLECTIONS = {
    SUBJECTS: Subject,
    SESSIONS: ClassSession,
}

READ_ONLY_FIELDS = {'id', 'created_at'}


def new_document_id():
    return uuid.uuid4().hex


class DocumentStore:

    def __init__(self, session=None, collections=None):
        self._session = session
        self.collections = dict(collections or COLLECTIONS)

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    def _model(self, collection):
        try:
            return self.collections[collection]
        except KeyError:
            raise ValueError(f"Coleção desconhecida: {collection}")

    def _assign(self, model, document, fields):
        for name, value in fields.items():
            if name in READ_ONLY_FIELDS:
                continue
            if not hasattr(model, name):
                raise ValueError(f"Campo desconhecido em {model.__tablename__}: {name}")
            setattr(document, name, value)

    def query(self, collection, filters=None, order_by=None):
        model = self._model(collection)
        try:
            q = self.session.query(model).filter_by(**(filters or {}))
            if order_by:
                q = q.order_by(*(getattr(model, name) for name in order_by))
            return [row.to_dict() for row in q.all()]
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Erro ao buscar {collection}: {e}")
            raise RemoteUnavailable()

    def get(self, collection, document_id):
        rows = self.query(collection, {'id': document_id})
        return rows[0] if rows else None

    def add(self, collection, fields):
        """Cria o documento e devolve o id gerado"""
        model = self._model(collection)
        document_id = new_document_id()
        try:
            document = model(id=document_id)
            self._assign(model, document, fields)
            self.session.add(document)
            self.session.commit()
            return document_id
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Erro ao criar documento em {collection}: {e}")
            raise RemoteUnavailable()

    def set(self, collection, document_id, fields, merge=True):
        """Grava o documento; com merge só os campos informados mudam"""
        model = self._model(collection)
        try:
            document = self.session.get(model, document_id)
            if document is None:
                document = model(id=document_id)
                self.session.add(document)
            elif not merge:
                self.session.delete(document)
                self.session.flush()
                document = model(id=document_id)
                self.session.add(document)
            self._assign(model, document, fields)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Erro ao gravar documento {document_id} em {collection}: {e}")
            raise RemoteUnavailable()

    def delete(self, collection, document_id):
        model = self._model(collection)
        try:
            document = self.session.get(model, document_id)
            if document is not None:
                self.session.delete(document)
                self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Erro ao excluir documento {document_id} em {collection}: {e}")
            raise RemoteUnavailable()
