# Importar todos os models
from .user import User, CreatorProfile, SocialLinks, Role
from .plan import Plan, PlanInterval
from .post import Post, PostMedia, PostPlanAccess, Like, SavedPost, Comment
from .subscription import Subscription, Payment, SubscriptionStatus, PaymentStatus, PaymentProvider
from .report import Report, ReportTarget, ReportReason, ReportStatus
from .audit_log import AuditLog, record_audit

__all__ = [
    'User', 'CreatorProfile', 'SocialLinks', 'Role',
    'Plan', 'PlanInterval',
    'Post', 'PostMedia', 'PostPlanAccess', 'Like', 'SavedPost', 'Comment',
    'Subscription', 'Payment', 'SubscriptionStatus', 'PaymentStatus', 'PaymentProvider',
    'Report', 'ReportTarget', 'ReportReason', 'ReportStatus',
    'AuditLog', 'record_audit',
]
