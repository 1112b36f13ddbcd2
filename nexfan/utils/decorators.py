from functools import wraps
from flask_login import current_user

from nexfan.errors import Forbidden, Unauthorized
from nexfan.services.access import Viewer


def current_viewer():
    """Converte a sessão atual em um Viewer explícito (ou None)"""
    if not current_user.is_authenticated:
        return None
    return Viewer(id=current_user.id, role=current_user.role)


def api_login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            raise Unauthorized()
        return f(*args, **kwargs)
    return decorated_function


def admin_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            raise Unauthorized()

        if not current_user.is_admin:
            raise Forbidden('Acesso negado. Apenas administradores.')

        return f(*args, **kwargs)
    return decorated_function
