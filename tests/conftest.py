"""
Pytest fixtures and configuration for the lab agenda tests
"""
from datetime import datetime

import pytest
import pytz

from app import create_app
from models import db

DEFAULT_PASSWORD = 'segredo123'


class FixedClock:
    """UTC clock frozen at a given instant"""

    def __init__(self, instant):
        self.instant = instant

    def __call__(self):
        return self.instant

    def set(self, *args):
        self.instant = datetime(*args, tzinfo=pytz.utc)


@pytest.fixture
def clock():
    # 12:00 em Brasília
    return FixedClock(datetime(2025, 3, 10, 15, 0, tzinfo=pytz.utc))


@pytest.fixture
def app_config(tmp_path):
    return {
        'TESTING': True,
        'SECRET_KEY': 'test-secret-key',
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'STORAGE_DIR': str(tmp_path / 'storage'),
        'LOG_LEVEL': 'DEBUG'
    }


@pytest.fixture
def app(app_config, clock):
    _app = create_app(app_config, clock=clock)
    with _app.app_context():
        yield _app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    return app.extensions['cms']


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture
def register(ctx):
    def _register(email, password=DEFAULT_PASSWORD, **profile):
        return ctx.controller.sign_up(email, password, profile)
    return _register


@pytest.fixture
def sign_in(ctx):
    def _sign_in(email, password=DEFAULT_PASSWORD):
        return ctx.controller.sign_in(email, password)
    return _sign_in


@pytest.fixture
def owner(register, sign_in):
    """Owner id of a signed-in user"""
    owner_id = register('ana@lab.br', display_name='Ana', laboratory='Lab. de Química')
    sign_in('ana@lab.br')
    return owner_id


@pytest.fixture
def subject(ctx, owner):
    return ctx.schedule.create_subject({'name': 'Química Orgânica', 'instructor': 'Prof. Lima', 'color_tag': '#1976D2'})
