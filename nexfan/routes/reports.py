# nexfan/routes/reports.py
from flask import Blueprint, request, jsonify
import logging

from nexfan import db
from nexfan.errors import Conflict, InvalidInput, NotFound
from nexfan.models import Comment, Post, Report, ReportStatus, ReportTarget, User, record_audit
from nexfan.utils.decorators import api_login_required, current_viewer
from nexfan.utils.validation import validate_report

bp = Blueprint('reports', __name__, url_prefix='/api/report')
logger = logging.getLogger(__name__)


def resolve_target_user(target_type, target_id):
    """Usuário responsável pelo alvo denunciado"""
    if target_type == ReportTarget.USER:
        user = db.session.get(User, target_id)
        if not user:
            raise NotFound('Usuário não encontrado')
        return user.id

    if target_type == ReportTarget.POST:
        post = db.session.get(Post, target_id)
        if not post:
            raise NotFound('Post não encontrado')
        return post.creator.user_id

    comment = db.session.get(Comment, target_id)
    if not comment:
        raise NotFound('Comentário não encontrado')
    return comment.user_id


@bp.route('', methods=['POST'])
@api_login_required
def create_report():
    viewer = current_viewer()
    data = validate_report(request.get_json(silent=True))

    target_user_id = resolve_target_user(data['target_type'], data['target_id'])
    if target_user_id == viewer.id:
        raise InvalidInput('Você não pode denunciar a si mesmo')

    existing = Report.query.filter(
        Report.sender_id == viewer.id,
        Report.target_type == data['target_type'],
        Report.target_id == data['target_id'],
        Report.status.in_(ReportStatus.OPEN)
    ).first()
    if existing:
        raise Conflict('Você já possui uma denúncia pendente para este alvo')

    report = Report(
        sender_id=viewer.id,
        target_user_id=target_user_id,
        target_type=data['target_type'],
        target_id=data['target_id'],
        reason=data['reason'],
        description=data.get('description'),
    )
    db.session.add(report)
    db.session.commit()

    logger.info(f"Denúncia {report.id} criada por {viewer.id}: {report.target_type} {report.target_id}")
    record_audit('REPORT_CREATED', 'Report', report.id, viewer.id,
                 {'targetType': report.target_type, 'reason': report.reason})

    return jsonify({'message': 'Denúncia enviada com sucesso', 'report': report.to_dict()}), 201
