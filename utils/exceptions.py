"""
Exceções da aplicação e tratadores de erro para a API
"""
import logging

from flask import jsonify

logger = logging.getLogger(__name__)


class LabAgendaError(Exception):
    """Exceção base da agenda"""
    status_code = 500

    def __init__(self, message, code="CMS_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)

    def to_dict(self):
        return {
            'status': 'error',
            'code': self.code,
            'message': self.message
        }


class Unauthenticated(LabAgendaError):
    """Operação de dados sem dono ativo"""
    status_code = 401

    def __init__(self, message="Usuário não autenticado"):
        super().__init__(message, code="UNAUTHENTICATED")


class AuthenticationFailed(LabAgendaError):
    status_code = 401

    def __init__(self, message="Email ou senha incorretos"):
        super().__init__(message, code="AUTH_FAILED")


class ValidationFailed(LabAgendaError):
    """Falha de validação associada a um campo do formulário"""
    status_code = 400

    def __init__(self, field, reason):
        self.field = field
        self.reason = reason
        super().__init__(reason, code="VALIDATION_ERROR")

    def to_dict(self):
        data = super().to_dict()
        data['field'] = self.field
        return data


class InvalidDateFormat(LabAgendaError, ValueError):
    status_code = 400

    def __init__(self, value):
        self.value = value
        super().__init__(f"Data inválida: {value!r} (esperado AAAA-MM-DD)", code="INVALID_DATE")


class NotFound(LabAgendaError):
    status_code = 404

    def __init__(self, message="Registro não encontrado"):
        super().__init__(message, code="NOT_FOUND")


class RemoteUnavailable(LabAgendaError):
    """Falha do armazenamento de documentos ou do provedor de identidade"""
    status_code = 503

    def __init__(self, message="Serviço indisponível. Tente novamente."):
        super().__init__(message, code="REMOTE_UNAVAILABLE")


class StaleResult(LabAgendaError):
    """Resultado de uma busca iniciada para outro dono"""
    status_code = 409

    def __init__(self, owner_id=None):
        self.owner_id = owner_id
        super().__init__("Os dados mudaram de usuário durante o carregamento", code="STALE_RESULT")


class CascadeDeleteFailed(LabAgendaError):
    status_code = 500

    def __init__(self, subject_id, failed_ids):
        self.subject_id = subject_id
        self.failed_ids = list(failed_ids)
        super().__init__(
            f"Não foi possível excluir {len(self.failed_ids)} aula(s) vinculada(s); a disciplina foi mantida",
            code="CASCADE_DELETE_FAILED"
        )

    def to_dict(self):
        data = super().to_dict()
        data['failed_ids'] = self.failed_ids
        return data


class StorageUnavailable(LabAgendaError):
    """Falha ao ler ou gravar o armazenamento local (arquivo corrompido, disco)"""
    status_code = 503

    def __init__(self, message="Armazenamento local indisponível. Tente novamente."):
        super().__init__(message, code="STORAGE_UNAVAILABLE")


class StorageSweepFailed(LabAgendaError):
    """Interna: nunca chega à interface"""

    def __init__(self, message="Falha na varredura do armazenamento local"):
        super().__init__(message, code="STORAGE_SWEEP_FAILED")


def register_error_handlers(app):
    """Registra os tratadores de erro JSON no app Flask"""

    @app.errorhandler(LabAgendaError)
    def handle_lab_agenda_error(error):
        if error.status_code >= 500:
            logger.error(f"{error.code}: {error.message}")
        return jsonify(error.to_dict()), error.status_code
