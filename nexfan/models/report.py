# nexfan/models/report.py
from datetime import datetime
from nexfan import db


class ReportTarget:
    USER = 'USER'
    POST = 'POST'
    COMMENT = 'COMMENT'

    ALL = (USER, POST, COMMENT)


class ReportReason:
    SPAM = 'SPAM'
    HARASSMENT = 'HARASSMENT'
    INAPPROPRIATE_CONTENT = 'INAPPROPRIATE_CONTENT'
    COPYRIGHT = 'COPYRIGHT'
    SCAM = 'SCAM'
    OTHER = 'OTHER'

    ALL = (SPAM, HARASSMENT, INAPPROPRIATE_CONTENT, COPYRIGHT, SCAM, OTHER)


class ReportStatus:
    PENDING = 'PENDING'
    INVESTIGATING = 'INVESTIGATING'
    RESOLVED = 'RESOLVED'
    DISMISSED = 'DISMISSED'

    ALL = (PENDING, INVESTIGATING, RESOLVED, DISMISSED)
    OPEN = (PENDING, INVESTIGATING)
    CLOSED = (RESOLVED, DISMISSED)


class Report(db.Model):
    """Denúncia de usuário, post ou comentário para revisão dos admins"""
    __tablename__ = 'reports'

    id = db.Column(db.Integer, primary_key=True)
    sender_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    target_user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    target_type = db.Column(db.String(20), nullable=False)  # USER, POST, COMMENT
    target_id = db.Column(db.Integer, nullable=False)  # id do usuário, post ou comentário denunciado
    reason = db.Column(db.String(30), nullable=False)
    description = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default=ReportStatus.PENDING, index=True)
    resolution = db.Column(db.Text)
    resolved_by = db.Column(db.Integer)
    resolved_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    sender = db.relationship('User', foreign_keys=[sender_id])
    target_user = db.relationship('User', foreign_keys=[target_user_id])

    @staticmethod
    def _user_summary(user):
        if not user:
            return None
        return {'id': user.id, 'name': user.name, 'email': user.email, 'avatar': user.avatar}

    def to_dict(self):
        return {
            'id': self.id,
            'targetType': self.target_type,
            'targetId': self.target_id,
            'reason': self.reason,
            'description': self.description,
            'status': self.status,
            'resolution': self.resolution,
            'resolvedBy': self.resolved_by,
            'resolvedAt': self.resolved_at.isoformat() if self.resolved_at else None,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'sender': self._user_summary(self.sender),
            'target': self._user_summary(self.target_user),
        }

    def __repr__(self):
        return f'<Report {self.target_type}:{self.target_id} - {self.status}>'
