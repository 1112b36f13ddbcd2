import logging
from datetime import datetime
from nexfan import db

logger = logging.getLogger(__name__)


class AuditLog(db.Model):
    """Modelo para log de auditoria"""
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer)
    action = db.Column(db.String(100), nullable=False)
    entity = db.Column(db.String(50))
    entity_id = db.Column(db.String(100))
    details = db.Column('metadata', db.JSON, default=dict)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<AuditLog {self.action} by {self.user_id}>'


def record_audit(action, entity=None, entity_id=None, user_id=None, details=None):
    """
    Grava um registro de auditoria sem nunca falhar a operação principal.
    Deve ser chamado depois do commit da operação auditada.
    """
    try:
        db.session.add(AuditLog(
            user_id=user_id,
            action=action,
            entity=entity,
            entity_id=str(entity_id) if entity_id is not None else None,
            details=details or {},
        ))
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Erro ao gravar audit log {action}: {e}")
