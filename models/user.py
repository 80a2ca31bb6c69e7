"""
Modelo de usuário (dono do laboratório)
"""
from . import db
from utils.helpers import utcnow


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.String(32), primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    display_name = db.Column(db.String(100), nullable=False)
    laboratory = db.Column(db.String(150))
    password_hash = db.Column(db.String(256), nullable=False)
    reset_token = db.Column(db.String(128), index=True)
    reset_token_expires_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'display_name': self.display_name,
            'laboratory': self.laboratory,
        }
