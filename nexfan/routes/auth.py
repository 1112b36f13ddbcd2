# nexfan/routes/auth.py
from flask import Blueprint, request, jsonify
from flask_login import login_user, logout_user, current_user
import logging

from nexfan import db
from nexfan.errors import Conflict, InvalidInput, Unauthorized
from nexfan.models import User, Role, record_audit
from nexfan.utils.decorators import api_login_required
from nexfan.utils.validation import validate_registration

bp = Blueprint('auth', __name__, url_prefix='/api/auth')
logger = logging.getLogger(__name__)


@bp.route('/register', methods=['POST'])
def register():
    data = validate_registration(request.get_json(silent=True))

    if User.query.filter_by(email=data['email']).first():
        raise Conflict('Email já cadastrado')

    user = User(email=data['email'], name=data['name'], role=Role.USER)
    user.set_password(data['password'])

    db.session.add(user)
    db.session.commit()

    login_user(user, remember=True)
    logger.info(f"Novo usuário registrado: {user.email}")
    record_audit('USER_REGISTERED', 'User', user.id, user.id)

    return jsonify({'user': user.to_dict()}), 201


@bp.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    if not email or not password:
        raise InvalidInput('Email e senha são obrigatórios')

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password):
        raise Unauthorized('Email ou senha incorretos')

    if not user.is_active:
        raise Unauthorized('Conta desativada')

    login_user(user, remember=True)
    return jsonify({'user': user.to_dict()})


@bp.route('/logout', methods=['POST'])
@api_login_required
def logout():
    logout_user()
    return jsonify({'success': True})


@bp.route('/me')
@api_login_required
def me():
    payload = current_user.to_dict()
    profile = current_user.creator_profile
    payload['creatorProfile'] = profile.to_dict() if profile else None
    return jsonify({'user': payload})
