"""
Pacote de modelos do banco de dados
"""
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

from .user import User
from .subject import Subject
from .class_session import ClassSession

__all__ = ['db', 'User', 'Subject', 'ClassSession']
