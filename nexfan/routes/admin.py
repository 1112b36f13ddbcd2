# nexfan/routes/admin.py
from flask import Blueprint, request, jsonify
from flask_login import current_user
from sqlalchemy import or_
from datetime import datetime
import logging

from nexfan import db
from nexfan.errors import InvalidInput, NotFound
from nexfan.models import (Comment, Like, Post, Report, ReportStatus, ReportTarget, Role, SavedPost, User,
                           record_audit)
from nexfan.services.subscription_service import SubscriptionService
from nexfan.utils.decorators import admin_required, current_viewer
from nexfan.utils.validation import validate_report_update

bp = Blueprint('admin', __name__, url_prefix='/api/admin')
logger = logging.getLogger(__name__)


@bp.route('/users')
@admin_required
def users():
    """Lista usuários com busca, filtro por papel e paginação"""
    page = request.args.get('page', 1, type=int)
    per_page = min(request.args.get('limit', 20, type=int), 100)
    search = (request.args.get('search') or '').strip()
    role = request.args.get('role')

    query = User.query
    if search:
        pattern = f'%{search}%'
        query = query.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
    if role in Role.ALL:
        query = query.filter(User.role == role)

    pagination = query.order_by(User.created_at.desc()).paginate(page=page, per_page=per_page, error_out=False)

    return jsonify({
        'users': [user.to_dict() for user in pagination.items],
        'pagination': {
            'page': page,
            'limit': per_page,
            'total': pagination.total,
            'totalPages': pagination.pages,
        }
    })


@bp.route('/users/<int:user_id>', methods=['PATCH'])
@admin_required
def update_user(user_id):
    user = db.session.get(User, user_id)
    if not user:
        raise NotFound('Usuário não encontrado')

    data = request.get_json(silent=True) or {}
    changes = {}

    if 'role' in data:
        if data['role'] not in Role.ALL:
            raise InvalidInput('Dados inválidos', details={'role': 'Papel inválido'})
        if user.id == current_user.id and data['role'] != Role.ADMIN:
            raise InvalidInput('Você não pode remover seu próprio acesso de administrador')
        changes['role'] = data['role']

    if 'isActive' in data:
        if not isinstance(data['isActive'], bool):
            raise InvalidInput('Dados inválidos', details={'isActive': 'Valor inválido'})
        if user.id == current_user.id and not data['isActive']:
            raise InvalidInput('Você não pode desativar sua própria conta')
        changes['is_active'] = data['isActive']

    for field, value in changes.items():
        setattr(user, field, value)
    db.session.commit()

    logger.info(f"Admin {current_user.email} atualizou usuário {user.email}: {changes}")
    record_audit('ADMIN_USER_UPDATED', 'User', user.id, current_user.id, changes)

    return jsonify({'user': user.to_dict()})


@bp.route('/users/<int:user_id>', methods=['DELETE'])
@admin_required
def delete_user(user_id):
    if user_id == current_user.id:
        raise InvalidInput('Você não pode excluir sua própria conta')

    user = db.session.get(User, user_id)
    if not user:
        raise NotFound('Usuário não encontrado')

    email = user.email
    Like.query.filter_by(user_id=user.id).delete()
    SavedPost.query.filter_by(user_id=user.id).delete()
    Comment.query.filter_by(user_id=user.id).delete()
    Report.query.filter(or_(Report.sender_id == user.id, Report.target_user_id == user.id)).delete(
        synchronize_session=False)
    db.session.delete(user)
    db.session.commit()

    logger.info(f"Admin {current_user.email} excluiu usuário {email}")
    record_audit('ADMIN_USER_DELETED', 'User', user_id, current_user.id, {'email': email})

    return jsonify({'success': True})


@bp.route('/subscription/<int:subscription_id>/cancel', methods=['POST'])
@admin_required
def cancel_subscription(subscription_id):
    subscription = SubscriptionService.cancel(subscription_id, current_viewer())
    return jsonify({'success': True, 'status': subscription.status})


# ==================== DENÚNCIAS ====================

@bp.route('/reports')
@admin_required
def reports():
    page = request.args.get('page', 1, type=int)
    per_page = min(request.args.get('limit', 20, type=int), 100)
    status = request.args.get('status')

    query = Report.query
    if status in ReportStatus.ALL:
        query = query.filter(Report.status == status)

    pagination = query.order_by(Report.created_at.desc(), Report.id.desc())\
        .paginate(page=page, per_page=per_page, error_out=False)

    return jsonify({
        'reports': [report.to_dict() for report in pagination.items],
        'pagination': {
            'page': page,
            'limit': per_page,
            'total': pagination.total,
            'totalPages': pagination.pages,
        }
    })


def _remove_reported_content(report):
    """Aplica a moderação ao alvo; False se ele já não existe"""
    if report.target_type == ReportTarget.USER:
        user = db.session.get(User, report.target_id)
        if not user:
            return False
        if user.id == current_user.id:
            raise InvalidInput('Você não pode desativar sua própria conta')
        user.is_active = False
        return True

    model = Post if report.target_type == ReportTarget.POST else Comment
    target = db.session.get(model, report.target_id)
    if not target:
        return False
    db.session.delete(target)
    return True


@bp.route('/reports/<int:report_id>', methods=['PATCH'])
@admin_required
def update_report(report_id):
    """
    Atualiza o status da denúncia

    Com removeContent e status RESOLVED o post/comentário denunciado é
    excluído; um usuário denunciado é desativado.
    """
    report = db.session.get(Report, report_id)
    if not report:
        raise NotFound('Denúncia não encontrada')

    data = validate_report_update(request.get_json(silent=True))
    remove_content = data.get('remove_content', False)
    if remove_content and data['status'] != ReportStatus.RESOLVED:
        raise InvalidInput('Conteúdo só pode ser removido ao resolver a denúncia')

    content_removed = _remove_reported_content(report) if remove_content else False

    report.status = data['status']
    if 'resolution' in data:
        report.resolution = data['resolution']
    if report.status in ReportStatus.CLOSED:
        report.resolved_by = current_user.id
        report.resolved_at = datetime.utcnow()
    else:
        report.resolved_by = None
        report.resolved_at = None
    db.session.commit()

    logger.info(f"Admin {current_user.email} marcou denúncia {report.id} como {report.status}")
    record_audit('REPORT_UPDATED', 'Report', report.id, current_user.id,
                 {'status': report.status, 'resolution': report.resolution, 'contentRemoved': content_removed})

    return jsonify({'message': 'Denúncia atualizada com sucesso', 'report': report.to_dict()})
