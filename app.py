# app.py - Agenda de aulas do laboratório (Flask)
from flask import Flask, Blueprint, current_app, jsonify, request, session
from datetime import timedelta
import atexit
import logging
import os
import urllib.parse
from dotenv import load_dotenv
from apscheduler.schedulers.background import BackgroundScheduler

# módulos internos
from models import db
from services import AppContext, MonthCursor, format_long, foreign_owner_sweep_job
from utils.constants import CIVIL_TIMEZONE, TIME_SLOTS
from utils.decorators import get_context, login_required
from utils.exceptions import ValidationFailed, register_error_handlers

load_dotenv()

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__, url_prefix='/api')


# --- Configuração ---
def _database_uri():
    database_url = os.getenv('DATABASE_URL')
    if database_url:
        return database_url

    DB_USER = os.getenv("DB_USER")
    DB_PASSWORD = os.getenv("DB_PASSWORD")
    DB_HOST = os.getenv("DB_HOST")
    DB_PORT = os.getenv("DB_PORT")
    DB_NAME = os.getenv("DB_NAME")
    if all([DB_USER, DB_PASSWORD, DB_HOST, DB_PORT, DB_NAME]):
        ENCODED_PASSWORD = urllib.parse.quote_plus(DB_PASSWORD)
        return f'postgresql://{DB_USER}:{ENCODED_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}'
    return 'sqlite:///lab_agenda.db'


def create_app(config=None, clock=None):
    app = Flask(__name__)

    app.config['SECRET_KEY'] = os.getenv('FLASK_SECRET_KEY')
    app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(hours=1)
    app.config['SQLALCHEMY_DATABASE_URI'] = _database_uri()
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['CIVIL_TIMEZONE'] = os.getenv('CIVIL_TIMEZONE', CIVIL_TIMEZONE)
    app.config['STORAGE_DIR'] = os.getenv('STORAGE_DIR') or app.instance_path
    app.config['LOCAL_DB_DIR'] = os.getenv('LOCAL_DB_DIR')
    app.config['SWEEP_INTERVAL_MINUTES'] = int(os.getenv('SWEEP_INTERVAL_MINUTES', 30))
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')
    app.config['PASSWORD_RESET_URL'] = os.getenv('PASSWORD_RESET_URL')
    app.config['AUTO_CREATE_TABLES'] = True
    if config:
        app.config.update(config)

    if not app.config['SECRET_KEY']:
        raise RuntimeError("FLASK_SECRET_KEY environment variable must be set for security")

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )
    os.makedirs(app.config['STORAGE_DIR'], exist_ok=True)

    db.init_app(app)
    ctx = AppContext(app.config, clock=clock).init_app(app)
    register_error_handlers(app)
    app.register_blueprint(api)
    register_commands(app)

    with app.app_context():
        if app.config['AUTO_CREATE_TABLES']:
            db.create_all()
        # início: estado UNKNOWN até a identidade persistida ser resolvida
        ctx.controller.start()

    return app


# --- Comandos Flask CLI ---
def register_commands(app):

    @app.cli.command("init-db")
    def init_db_command():
        """Creates the database tables."""
        with app.app_context():
            db.create_all()
        print("Database initialized.")

    @app.cli.command("sweep-storage")
    def sweep_storage_command():
        """Removes local storage keys that belong to other owners."""
        with app.app_context():
            report = foreign_owner_sweep_job(app)
        if report is None:
            print("No active owner; nothing to sweep.")
        else:
            print(f"Found {len(report.found)} foreign key(s), removed {len(report.removed)}.")


def _payload():
    return request.get_json(silent=True) or {}


# --- Autenticação ---
@api.route('/auth/register', methods=['POST'])
def register():
    ctx = get_context()
    data = _payload()
    password = data.get('password')
    if data.get('password_confirm') is not None and data.get('password_confirm') != password:
        raise ValidationFailed('confirmarSenha', "As senhas não coincidem")

    owner_id = ctx.controller.sign_up(
        data.get('email'),
        password,
        {'display_name': data.get('display_name'), 'laboratory': data.get('laboratory')}
    )
    return jsonify({
        "status": "success",
        "message": "Cadastro realizado com sucesso. Faça login.",
        "user_id": owner_id
    }), 201


@api.route('/auth/login', methods=['POST'])
def login():
    ctx = get_context()
    data = _payload()
    principal = ctx.controller.sign_in(data.get('email'), data.get('password'))

    session.clear() # sessão anterior descartada
    session['owner_id'] = principal.owner_id
    session.permanent = True

    return jsonify({
        "status": "success",
        "message": f"{principal.display_name}, bem-vindo(a) à agenda do laboratório.",
        "user": principal.to_dict()
    })


@api.route('/auth/logout', methods=['POST'])
@login_required
def logout():
    get_context().controller.sign_out()
    session.clear()
    return jsonify({"status": "success", "message": "Sessão encerrada."})


@api.route('/auth/me', methods=['GET'])
@login_required
def current_user():
    return jsonify({"status": "success", **get_context().controller.snapshot()})


@api.route('/auth/profile', methods=['PUT'])
@login_required
def update_profile():
    ctx = get_context()
    data = _payload()
    principal = ctx.identity.update_profile(
        ctx.controller.require_owner(),
        display_name=data.get('display_name'),
        laboratory=data.get('laboratory')
    )
    ctx.controller.refresh_principal(principal)
    return jsonify({"status": "success", "message": "Perfil atualizado.", "user": principal.to_dict()})


@api.route('/auth/password-reset', methods=['POST'])
def password_reset():
    ctx = get_context()
    email = _payload().get('email')
    token = ctx.identity.send_password_reset(email)
    reset_url = current_app.config.get('PASSWORD_RESET_URL') or f"{request.host_url.rstrip('/')}/redefinir-senha"
    ctx.mailer.send_password_reset(email, token, f"{reset_url}?{urllib.parse.urlencode({'token': token})}")
    return jsonify({
        "status": "success",
        "message": "Enviamos as instruções de redefinição de senha para o seu email."
    })


@api.route('/auth/password-reset/confirm', methods=['POST'])
def password_reset_confirm():
    data = _payload()
    get_context().identity.reset_password(data.get('token'), data.get('password'))
    return jsonify({"status": "success", "message": "Senha redefinida. Faça login novamente."})


# --- Horários ---
@api.route('/horarios', methods=['GET'])
def get_time_slots():
    return jsonify(TIME_SLOTS)


@api.route('/today', methods=['GET'])
def get_today():
    classifier = get_context().classifier
    today = classifier.today()
    return jsonify({
        "today": today.isoformat(),
        "long_date": format_long(today),
        "timezone": classifier.timezone.zone
    })


# --- Disciplinas ---
@api.route('/subjects', methods=['GET'])
@login_required
def get_subjects():
    force_refresh = request.args.get('refresh') == '1'
    return jsonify(get_context().schedule.list_subjects(force_refresh).to_dict('subjects'))


@api.route('/subjects', methods=['POST'])
@login_required
def create_subject():
    subject = get_context().schedule.create_subject(_payload())
    return jsonify({"status": "success", "message": "Disciplina adicionada.", "subject": subject}), 201


@api.route('/subjects/<string:subject_id>', methods=['PUT', 'DELETE'])
@login_required
def handle_subject(subject_id):
    schedule = get_context().schedule

    if request.method == 'PUT':
        subject = schedule.update_subject(subject_id, _payload())
        return jsonify({"status": "success", "message": "Disciplina atualizada.", "subject": subject})

    result = schedule.delete_subject(subject_id)
    return jsonify({
        "status": "success",
        "message": "Disciplina e aulas vinculadas excluídas.",
        "deleted_sessions": result['deleted_sessions']
    })


@api.route('/subjects/<string:subject_id>/sessions', methods=['GET'])
@login_required
def get_linked_sessions(subject_id):
    linked = get_context().schedule.linked_sessions(subject_id)
    return jsonify({"status": "success", "sessions": linked, "count": len(linked)})


# --- Aulas ---
@api.route('/sessions', methods=['GET'])
@login_required
def get_sessions():
    force_refresh = request.args.get('refresh') == '1'
    return jsonify(get_context().schedule.list_sessions(force_refresh).to_dict('sessions'))


@api.route('/sessions', methods=['POST'])
@login_required
def create_session():
    created = get_context().schedule.create_session(_payload())
    return jsonify({"status": "success", "message": "Aula agendada.", "session": created}), 201


@api.route('/sessions/<string:session_id>', methods=['PUT', 'DELETE'])
@login_required
def handle_session(session_id):
    schedule = get_context().schedule

    if request.method == 'PUT':
        updated = schedule.update_session(session_id, _payload())
        return jsonify({"status": "success", "message": "Aula atualizada.", "session": updated})

    schedule.delete_session(session_id)
    return jsonify({"status": "success", "message": "Aula excluída."})


# --- Calendário e relatórios ---
@api.route('/calendar', methods=['GET'])
@login_required
def get_calendar():
    schedule = get_context().schedule
    year = request.args.get('year', type=int)
    month = request.args.get('month', type=int)
    step = request.args.get('step', default=0, type=int)

    cursor = None
    if year is not None and month is not None:
        if not 1 <= month <= 12:
            raise ValidationFailed('mes', "Mês inválido")
        cursor = MonthCursor(year, month)

    return jsonify({"status": "success", "calendar": schedule.navigate(step, cursor)})


@api.route('/reports', methods=['GET'])
@login_required
def get_reports():
    return jsonify({"status": "success", "report": get_context().schedule.build_report()})


# --- Execução do app ---
if __name__ == '__main__':
    app = create_app()
    print("--- [CMS] Database check complete. System ready. ---")

    # APScheduler: varredura periódica de dados de outros usuários
    scheduler = BackgroundScheduler(timezone=app.config['CIVIL_TIMEZONE'])
    scheduler.add_job(
        lambda: foreign_owner_sweep_job(app),
        'interval',
        minutes=app.config['SWEEP_INTERVAL_MINUTES'],
        id='foreign_owner_sweep_job'
    )

    try:
        scheduler.start()
        print("Scheduler started... Press Ctrl+C to exit")
        atexit.register(lambda: scheduler.shutdown())
    except Exception as e:
        print(f"Error starting scheduler: {e}")

    port = int(os.environ.get("PORT", 2424))
    app.run(debug=os.environ.get("FLASK_DEBUG", "False").lower() == "true", host='0.0.0.0', port=port)
