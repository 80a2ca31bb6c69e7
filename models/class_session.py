"""
Modelo de aula agendada
"""
from . import db
from utils.constants import DEFAULT_SESSION_STATUS
from utils.helpers import utcnow


class ClassSession(db.Model):
    __tablename__ = 'class_sessions'

    id = db.Column(db.String(32), primary_key=True)
    owner_id = db.Column(db.String(32), db.ForeignKey('users.id'), nullable=False, index=True)
    subject_id = db.Column(db.String(32), nullable=False, index=True)
    date = db.Column(db.String(10), nullable=False)  # AAAA-MM-DD, sem horário
    time_slot = db.Column(db.String(11), nullable=False)
    notes = db.Column(db.Text, default='')
    status = db.Column(db.String(20), default=DEFAULT_SESSION_STATUS, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'owner_id': self.owner_id,
            'subject_id': self.subject_id,
            'date': self.date,
            'time_slot': self.time_slot,
            'notes': self.notes or '',
            'status': self.status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }
