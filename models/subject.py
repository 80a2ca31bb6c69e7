"""
Modelo de disciplina
"""
from . import db
from utils.helpers import utcnow


class Subject(db.Model):
    __tablename__ = 'subjects'

    id = db.Column(db.String(32), primary_key=True)
    owner_id = db.Column(db.String(32), db.ForeignKey('users.id'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    instructor = db.Column(db.String(100), nullable=False)
    color_tag = db.Column(db.String(7), nullable=False)  # #RRGGBB
    notes = db.Column(db.Text, default='')
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'owner_id': self.owner_id,
            'name': self.name,
            'instructor': self.instructor,
            'color_tag': self.color_tag,
            'notes': self.notes or '',
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }
