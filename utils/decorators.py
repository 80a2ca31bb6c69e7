"""
Decoradores de autenticação das rotas
"""
from functools import wraps
from flask import session, g, jsonify, current_app


def get_context():
    """Contexto da aplicação criado em create_app"""
    return current_app.extensions['cms']


def _get_current_owner():
    """Dono ativo quando a sessão do navegador e o controlador concordam"""
    controller = get_context().controller
    owner_id = session.get('owner_id')
    if not owner_id:
        return None

    # sem cache entre requisições: o dono ativo pode mudar a qualquer momento
    if controller.is_authenticated and controller.current_owner == owner_id:
        g.owner_id = owner_id
    else:
        session.clear() # sessão de outro dono ou já encerrada
        g.owner_id = None
    return g.owner_id


def login_required(f):
    """Rotas da API que exigem um dono autenticado"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _get_current_owner():
            return jsonify({"status": "error", "code": "UNAUTHENTICATED", "message": "Login necessário."}), 401
        return f(*args, **kwargs)
    return decorated_function
