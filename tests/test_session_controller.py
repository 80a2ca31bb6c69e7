"""
Tests for identity transitions, the session controller and the periodic sweep job
"""
import json
import os
from datetime import timedelta

import pytest

from app import create_app
from models import db, User
from services import foreign_owner_sweep_job
from services.session_controller import SessionState
from services.sweeper import SweepReport, owner_key
from utils.constants import ACTIVE_OWNER_KEY, AUTH_OWNER_KEY
from utils.exceptions import AuthenticationFailed, NotFound, RemoteUnavailable, StorageUnavailable, Unauthenticated, ValidationFailed
from utils.helpers import utcnow

from conftest import DEFAULT_PASSWORD


def failing_scan(*args):
    raise OSError('storage unavailable')


class TestStartup:

    def test_no_persisted_identity_is_unauthenticated(self, ctx):
        assert ctx.controller.state is SessionState.UNAUTHENTICATED
        assert ctx.controller.current_owner is None
        with pytest.raises(Unauthenticated):
            ctx.controller.require_owner()

    def test_restart_restores_identity(self, app_config, clock, tmp_path):
        app_config['SQLALCHEMY_DATABASE_URI'] = f"sqlite:///{tmp_path / 'agenda.db'}"
        first = create_app(app_config, clock=clock)
        with first.app_context():
            controller = first.extensions['cms'].controller
            controller.sign_up('ana@lab.br', DEFAULT_PASSWORD)
            principal = controller.sign_in('ana@lab.br', DEFAULT_PASSWORD)

        second = create_app(app_config, clock=clock)
        restored = second.extensions['cms'].controller

        assert restored.is_authenticated
        assert restored.current_owner == principal.owner_id
        with second.app_context():
            db.session.remove()
            db.drop_all()

    def test_stale_persisted_identity_is_dropped(self, app_config, clock):
        first = create_app(app_config, clock=clock)
        first.extensions['cms'].persistent.set(AUTH_OWNER_KEY, 'deleted-user')

        second = create_app(app_config, clock=clock)
        ctx = second.extensions['cms']

        assert ctx.controller.state is SessionState.UNAUTHENTICATED
        assert ctx.persistent.get(AUTH_OWNER_KEY) is None


class TestSignIn:

    def test_marks_active_owner_and_stores_user_data(self, ctx, owner):
        assert ctx.controller.is_authenticated
        assert ctx.controller.require_owner() == owner
        assert ctx.persistent.get(ACTIVE_OWNER_KEY) == owner
        user_data = json.loads(ctx.persistent.get(owner_key(owner, 'user_data')))
        assert user_data['display_name'] == 'Ana'
        assert user_data['laboratory'] == 'Lab. de Química'

    def test_owner_change_removes_previous_owner_data(self, ctx, owner, register, sign_in):
        ctx.schedule.list_subjects()
        ctx.schedule.navigate(step=1)
        assert ctx.persistent.get(owner_key(owner, 'subjects')) is not None

        bruno = register('bruno@lab.br')
        sign_in('bruno@lab.br')

        assert ctx.controller.current_owner == bruno
        assert not any(key.startswith(f'cms_{owner}_') for key in ctx.persistent.keys())
        assert ctx.volatile.get(owner_key(owner, 'calendar_cursor')) is None
        assert ctx.persistent.get(ACTIVE_OWNER_KEY) == bruno

    def test_leftover_foreign_keys_removed_on_sign_in(self, ctx, register, sign_in):
        ctx.persistent.set(owner_key('intruso', 'subjects'), '[]')
        ctx.persistent.set(owner_key('global', 'settings'), '{}')
        ctx.volatile.set(owner_key('intruso', 'calendar_cursor'), '2025-01')
        register('ana@lab.br')

        sign_in('ana@lab.br')

        assert ctx.persistent.get(owner_key('intruso', 'subjects')) is None
        assert ctx.volatile.get(owner_key('intruso', 'calendar_cursor')) is None
        assert ctx.persistent.get(owner_key('global', 'settings')) == '{}'

    def test_new_owner_starts_with_empty_cache(self, ctx, subject, register, sign_in):
        alice = ctx.controller.current_owner
        ctx.schedule.list_subjects()
        register('bruno@lab.br')
        sign_in('bruno@lab.br')

        assert ctx.cache.rows(alice, 'subjects') is None
        assert ctx.schedule.list_subjects().rows == []

    def test_listener_failure_purges_local_storage(self, ctx, register, sign_in, monkeypatch):
        ctx.persistent.set('theme', 'dark')
        register('ana@lab.br')
        monkeypatch.setattr(ctx.sweeper, 'sweep_foreign_owners', failing_scan)

        with pytest.raises(Unauthenticated):
            sign_in('ana@lab.br')

        assert ctx.controller.state is SessionState.UNAUTHENTICATED
        assert ctx.persistent.keys() == []
        assert ctx.identity.current is None

    def test_rejected_sign_in_forgets_identity(self, ctx, register, sign_in, monkeypatch):
        register('ana@lab.br')
        monkeypatch.setattr(ctx.sweeper, 'sweep_foreign_owners', failing_scan)
        monkeypatch.setattr(ctx.sweeper, 'purge_all', lambda: SweepReport())

        with pytest.raises(Unauthenticated):
            sign_in('ana@lab.br')

        assert ctx.identity.current is None
        assert ctx.persistent.get(AUTH_OWNER_KEY) is None

    def test_unreadable_storage_is_purged_before_retry(self, ctx, register, sign_in):
        register('ana@lab.br')
        with open(ctx.persistent.path, 'w', encoding='utf-8') as f:
            f.write('{corrompido')

        with pytest.raises(StorageUnavailable):
            sign_in('ana@lab.br')

        assert ctx.controller.state is SessionState.UNAUTHENTICATED
        assert not os.path.exists(ctx.persistent.path)
        assert sign_in('ana@lab.br').email == 'ana@lab.br'

    def test_scan_failure_ends_unauthenticated(self, ctx, register, sign_in, monkeypatch):
        register('ana@lab.br')
        monkeypatch.setattr(ctx.persistent, 'keys', failing_scan)

        with pytest.raises(Unauthenticated):
            sign_in('ana@lab.br')

        assert ctx.controller.current_owner is None

    def test_wrong_password(self, ctx, register, sign_in):
        register('ana@lab.br')
        with pytest.raises(AuthenticationFailed) as excinfo:
            sign_in('ana@lab.br', 'errada123')
        assert excinfo.value.message.startswith("Senha incorreta")
        assert ctx.controller.state is SessionState.UNAUTHENTICATED

    def test_unknown_email(self, sign_in):
        with pytest.raises(AuthenticationFailed) as excinfo:
            sign_in('ninguem@lab.br')
        assert excinfo.value.message.startswith("Email não cadastrado")


class TestSignOut:

    def test_clears_cache_and_owner_data(self, ctx, subject):
        owner = ctx.controller.current_owner
        ctx.schedule.list_subjects()

        ctx.controller.sign_out()

        assert ctx.controller.state is SessionState.UNAUTHENTICATED
        assert ctx.cache.rows(owner, 'subjects') is None
        assert ctx.persistent.get(ACTIVE_OWNER_KEY) is None
        assert ctx.persistent.get(AUTH_OWNER_KEY) is None
        assert not any(key.startswith(f'cms_{owner}_') for key in ctx.persistent.keys())

    def test_remote_failure_still_signs_out(self, ctx, owner, monkeypatch):
        def remote_down():
            raise RemoteUnavailable()

        monkeypatch.setattr(ctx.identity, 'sign_out', remote_down)

        ctx.controller.sign_out()

        assert ctx.controller.state is SessionState.UNAUTHENTICATED
        assert ctx.persistent.keys() == []
        assert ctx.persistent.get(ACTIVE_OWNER_KEY) is None
        with pytest.raises(Unauthenticated):
            ctx.schedule.list_subjects()

    def test_failed_scan_purges_local_storage(self, ctx, subject, sign_in):
        ctx.schedule.list_subjects()
        ctx.persistent.set('theme', 'dark')
        with open(ctx.persistent.path, 'w', encoding='utf-8') as f:
            f.write('{corrompido')

        ctx.controller.sign_out()

        assert ctx.controller.state is SessionState.UNAUTHENTICATED
        assert not os.path.exists(ctx.persistent.path)
        assert sign_in('ana@lab.br').email == 'ana@lab.br'

    def test_failed_owner_scan_triggers_full_purge(self, ctx, owner, monkeypatch):
        purges = []
        purge_all = ctx.sweeper.purge_all
        ctx.volatile.set('draft', 'x')
        monkeypatch.setattr(ctx.sweeper, 'sweep_owner', lambda owner_id: SweepReport(scan_failed=True))
        monkeypatch.setattr(ctx.sweeper, 'purge_all', lambda: purges.append(1) or purge_all())

        ctx.controller.sign_out()

        assert purges
        assert ctx.volatile.keys() == []
        assert ctx.persistent.get(AUTH_OWNER_KEY) is None
        assert ctx.controller.state is SessionState.UNAUTHENTICATED

    def test_one_notification_per_transition(self, ctx, register, sign_in):
        seen = []
        unsubscribe = ctx.identity.on_identity_change(seen.append)
        register('ana@lab.br')

        sign_in('ana@lab.br')
        ctx.controller.sign_out()
        ctx.controller.sign_out()
        unsubscribe()

        assert [p.email if p else None for p in seen] == ['ana@lab.br', None]


class TestIdentity:

    @pytest.mark.parametrize('email, password, field', [
        ('sem-arroba', DEFAULT_PASSWORD, 'email'),
        ('ana@lab.br', '123', 'senha'),
        ('ANA@LAB.BR', DEFAULT_PASSWORD, 'email'),
    ])
    def test_sign_up_validation(self, register, email, password, field):
        register('ana@lab.br')
        with pytest.raises(ValidationFailed) as excinfo:
            register(email, password)
        assert excinfo.value.field == field

    def test_display_name_defaults_to_email_prefix(self, ctx, register, sign_in):
        register('carla@lab.br')
        assert sign_in('carla@lab.br').display_name == 'carla'

    def test_password_reset_flow(self, ctx, register, sign_in):
        register('ana@lab.br')
        token = ctx.identity.send_password_reset('ana@lab.br')

        ctx.identity.reset_password(token, 'novaSenha1')

        assert sign_in('ana@lab.br', 'novaSenha1').email == 'ana@lab.br'
        with pytest.raises(AuthenticationFailed):
            ctx.identity.reset_password(token, 'outraSenha1')

    def test_expired_reset_token(self, ctx, register):
        owner_id = register('ana@lab.br')
        token = ctx.identity.send_password_reset('ana@lab.br')
        user = db.session.get(User, owner_id)
        user.reset_token_expires_at = utcnow() - timedelta(minutes=1)
        db.session.commit()

        with pytest.raises(AuthenticationFailed):
            ctx.identity.reset_password(token, 'novaSenha1')

    def test_reset_unknown_email(self, ctx):
        with pytest.raises(NotFound):
            ctx.identity.send_password_reset('ninguem@lab.br')

    def test_update_profile(self, ctx, owner):
        principal = ctx.identity.update_profile(owner, display_name='Ana Paula')
        ctx.controller.refresh_principal(principal)

        assert ctx.controller.snapshot()['user']['display_name'] == 'Ana Paula'
        with pytest.raises(ValidationFailed):
            ctx.identity.update_profile(owner, display_name='  ')


class TestForeignOwnerSweepJob:

    def test_no_active_owner(self, app):
        assert foreign_owner_sweep_job(app) is None

    def test_removes_foreign_keys(self, app, ctx, owner):
        ctx.persistent.set(owner_key('intruso', 'sessions'), '[]')

        report = foreign_owner_sweep_job(app)

        assert report.removed == {owner_key('intruso', 'sessions')}
        assert ctx.controller.current_owner == owner

    def test_scan_failure_forces_sign_out(self, app, ctx, owner, monkeypatch):
        monkeypatch.setattr(ctx.volatile, 'keys', failing_scan)

        report = foreign_owner_sweep_job(app)

        assert report.scan_failed
        assert ctx.controller.state is SessionState.UNAUTHENTICATED
