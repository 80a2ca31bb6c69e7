"""
Provedor de identidade (cadastro, login, logout, recuperação de senha)
Notifica os ouvintes uma vez a cada mudança de identidade.
"""
import logging
import re
import secrets
import threading
import uuid
from dataclasses import dataclass
from datetime import timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from models import db, User
from utils.constants import (
    AUTH_OWNER_KEY, FIELD_EMAIL, FIELD_PASSWORD, MIN_PASSWORD_LENGTH, PASSWORD_RESET_TTL_MINUTES
)
from utils.exceptions import AuthenticationFailed, NotFound, RemoteUnavailable, StorageUnavailable, ValidationFailed
from utils.helpers import clean_text, utcnow

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


@dataclass(frozen=True)
class Principal:
    owner_id: str
    email: str
    display_name: str
    laboratory: str = None

    @classmethod
    def from_user(cls, user):
        return cls(owner_id=user.id, email=user.email, display_name=user.display_name, laboratory=user.laboratory)

    def to_dict(self):
        return {
            'id': self.owner_id,
            'email': self.email,
            'display_name': self.display_name,
            'laboratory': self.laboratory
        }


def _aware(value):
    # SQLite devolve datetimes sem fuso
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class IdentityProvider:

    def __init__(self, persistent):
        self.persistent = persistent
        self._principal = None
        self._listeners = []
        self._lock = threading.Lock()

    @property
    def current(self):
        return self._principal

    def on_identity_change(self, callback):
        """Registra um ouvinte; devolve a função que cancela o registro"""
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)
        return unsubscribe

    def _notify(self, principal):
        with self._lock:
            listeners = list(self._listeners)
        for callback in listeners:
            callback(principal)

    def _find_by_email(self, email):
        try:
            return User.query.filter(db.func.lower(User.email) == email.lower()).first()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Erro ao consultar usuário {email}: {e}")
            raise RemoteUnavailable()

    def resolve(self):
        """Restaura a identidade persistida (início do app) e notifica o resultado"""
        owner_id = self.persistent.get(AUTH_OWNER_KEY)
        principal = None
        if owner_id:
            try:
                user = db.session.get(User, owner_id)
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f"Erro ao restaurar identidade {owner_id}: {e}")
                raise RemoteUnavailable()
            if user:
                principal = Principal.from_user(user)
            else:
                self.persistent.remove(AUTH_OWNER_KEY)
        self._principal = principal
        self._notify(principal)
        return principal

    def sign_up(self, email, secret, profile=None):
        """Cadastra um novo dono e devolve seu id"""
        profile = profile or {}
        email = clean_text(email) or ''
        if not EMAIL_RE.match(email):
            raise ValidationFailed(FIELD_EMAIL, "Email inválido")
        if not secret or len(secret) < MIN_PASSWORD_LENGTH:
            raise ValidationFailed(FIELD_PASSWORD, f"A senha deve ter pelo menos {MIN_PASSWORD_LENGTH} caracteres")
        if self._find_by_email(email):
            raise ValidationFailed(FIELD_EMAIL, "Este email já está em uso")

        display_name = clean_text(profile.get('display_name')) or email.split('@')[0]
        user = User(
            id=uuid.uuid4().hex,
            email=email,
            display_name=display_name,
            laboratory=clean_text(profile.get('laboratory')),
            password_hash=generate_password_hash(secret, method='pbkdf2:sha256')
        )
        try:
            db.session.add(user)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Erro durante o cadastro: {e}")
            raise RemoteUnavailable()
        logger.info(f"Novo usuário cadastrado: {user.id}")
        return user.id

    def sign_in(self, email, secret):
        email = clean_text(email) or ''
        user = self._find_by_email(email) if email else None
        if not user:
            raise AuthenticationFailed("Email não cadastrado no sistema. Verifique o email digitado ou crie uma nova conta.")
        if not secret or not check_password_hash(user.password_hash, secret):
            raise AuthenticationFailed("Senha incorreta. Verifique sua senha e tente novamente.")

        principal = Principal.from_user(user)
        self._persist_owner(principal.owner_id)
        self._principal = principal
        self._notify(principal)
        return principal

    def sign_out(self):
        previous = self._principal
        self._principal = None
        try:
            self._persist_owner(None)
        finally:
            if previous is not None:
                self._notify(None)

    def discard(self, principal):
        """Esquece um login que o controlador recusou, sem notificar os ouvintes"""
        if self._principal is not None and self._principal.owner_id == principal.owner_id:
            self._principal = None
        try:
            self._persist_owner(None)
        except StorageUnavailable:
            logger.warning(f"Identidade de {principal.owner_id} não pôde ser removida do armazenamento local")

    def _persist_owner(self, owner_id):
        """Grava o dono autenticado; None remove o registro"""
        try:
            if owner_id is None:
                self.persistent.remove(AUTH_OWNER_KEY)
            else:
                self.persistent.set(AUTH_OWNER_KEY, owner_id)
        except Exception as e:
            logger.error(f"Erro ao gravar identidade no armazenamento local: {e}")
            raise StorageUnavailable()

    def send_password_reset(self, email):
        """Gera o token de redefinição; o envio por email fica com quem chama"""
        user = self._find_by_email(clean_text(email) or '')
        if not user:
            raise NotFound("Email não cadastrado no sistema")
        token = secrets.token_urlsafe(32)
        user.reset_token = token
        user.reset_token_expires_at = utcnow() + timedelta(minutes=PASSWORD_RESET_TTL_MINUTES)
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Erro ao gerar redefinição de senha: {e}")
            raise RemoteUnavailable()
        logger.info(f"Redefinição de senha solicitada para {user.id}")
        return token

    def reset_password(self, token, new_secret):
        if not new_secret or len(new_secret) < MIN_PASSWORD_LENGTH:
            raise ValidationFailed(FIELD_PASSWORD, f"A senha deve ter pelo menos {MIN_PASSWORD_LENGTH} caracteres")
        user = User.query.filter_by(reset_token=token).first() if token else None
        if not user or _aware(user.reset_token_expires_at) < utcnow():
            raise AuthenticationFailed("Link de redefinição inválido ou expirado")
        user.password_hash = generate_password_hash(new_secret, method='pbkdf2:sha256')
        user.reset_token = None
        user.reset_token_expires_at = None
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Erro ao redefinir senha: {e}")
            raise RemoteUnavailable()
        return True

    def update_profile(self, owner_id, display_name=None, laboratory=None):
        user = db.session.get(User, owner_id)
        if not user:
            raise NotFound("Usuário não encontrado")
        if display_name is not None:
            display_name = clean_text(display_name)
            if not display_name:
                raise ValidationFailed('usuario', "Nome de usuário é obrigatório")
            user.display_name = display_name
        if laboratory is not None:
            user.laboratory = clean_text(laboratory)
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Erro ao atualizar perfil {owner_id}: {e}")
            raise RemoteUnavailable()
        principal = Principal.from_user(user)
        if self._principal and self._principal.owner_id == owner_id:
            self._principal = principal
        return principal
