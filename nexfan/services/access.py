"""
Controle de acesso a conteúdo por assinatura

Toda decisão de acesso passa por is_subscription_active, calculada no momento
da leitura. O status gravado no banco nunca é usado sozinho para liberar
conteúdo: uma assinatura ACTIVE com período vencido não libera nada.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func

from nexfan import db
from nexfan.models import Comment, Like, Post, Role, SavedPost, Subscription, SubscriptionStatus


@dataclass(frozen=True)
class Viewer:
    """Identidade de quem está vendo o conteúdo, passada explicitamente"""
    id: int
    role: str = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass(frozen=True)
class PostAccess:
    content_visible: bool
    media_visible: bool

    @property
    def is_locked(self) -> bool:
        return not self.content_visible


VISIBLE = PostAccess(content_visible=True, media_visible=True)
LOCKED = PostAccess(content_visible=False, media_visible=False)


def is_subscription_active(status: Optional[str], current_period_end: Optional[datetime],
                           now: Optional[datetime] = None) -> bool:
    """
    Verifica se a assinatura libera acesso neste instante

    Args:
        status: Status gravado da assinatura
        current_period_end: Fim do período pago
        now: Instante de referência (padrão: agora em UTC)

    Returns:
        bool: True somente se status == ACTIVE e now <= current_period_end
    """
    if status != SubscriptionStatus.ACTIVE:
        return False
    if current_period_end is None:
        return False
    if now is None:
        now = datetime.utcnow()
    return now <= current_period_end


def resolve_post_access(post: Post, subscription: Optional[Subscription], viewer: Optional[Viewer],
                        now: Optional[datetime] = None) -> PostAccess:
    """
    Decide se o viewer pode ver o conteúdo completo do post

    Args:
        post: Post avaliado
        subscription: Assinatura do viewer ao criador do post (ou None)
        viewer: Viewer autenticado (ou None para anônimo)
        now: Instante de referência

    Returns:
        PostAccess: visibilidade do conteúdo e da mídia
    """
    if post.is_public:
        return VISIBLE

    if viewer is None or subscription is None:
        return LOCKED

    # A assinatura precisa ser do próprio viewer e do criador do post
    if subscription.user_id != viewer.id or subscription.creator_id != post.creator_id:
        return LOCKED

    if not is_subscription_active(subscription.status, subscription.current_period_end, now):
        return LOCKED

    plan_ids = post.plan_ids
    if not plan_ids:
        return VISIBLE

    if subscription.plan_id in plan_ids:
        return VISIBLE

    return LOCKED


def serialize_post(post: Post, access: PostAccess, liked: bool = False, saved: bool = False,
                   likes_count: int = 0, comments_count: int = 0) -> Dict:
    """Monta o JSON do post, removendo conteúdo e mídia quando bloqueado"""
    creator = post.creator
    return {
        'id': post.id,
        'title': post.title,
        'content': post.content if access.content_visible else None,
        'media': [m.to_dict() for m in post.media] if access.media_visible else [],
        'isPublic': post.is_public,
        'isPinned': post.is_pinned,
        'isLocked': access.is_locked,
        'isLiked': liked,
        'isSaved': saved,
        'planIds': sorted(post.plan_ids),
        'publishedAt': post.published_at.isoformat() if post.published_at else None,
        'createdAt': post.created_at.isoformat() if post.created_at else None,
        '_count': {'likes': likes_count, 'comments': comments_count},
        'creator': {
            'id': creator.id,
            'userId': creator.user_id,
            'displayName': creator.display_name,
            'slug': creator.slug,
            'avatar': creator.user.avatar if creator.user else None,
            'isVerified': creator.is_verified,
        } if creator else None,
    }


def resolve_posts(posts: Iterable[Post], viewer: Optional[Viewer],
                  now: Optional[datetime] = None) -> List[Dict]:
    """
    Resolve acesso e overlays (curtido/salvo) para uma lista de posts

    Usado pelo feed, perfil do criador e posts salvos. As curtidas e os
    salvos são calculados independentemente da decisão de acesso.
    """
    posts = list(posts)
    if not posts:
        return []

    post_ids = [p.id for p in posts]
    creator_ids = {p.creator_id for p in posts}

    subscriptions = {}
    liked_ids = set()
    saved_ids = set()

    if viewer is not None:
        rows = Subscription.query.filter(
            Subscription.user_id == viewer.id,
            Subscription.creator_id.in_(creator_ids)
        ).all()
        subscriptions = {sub.creator_id: sub for sub in rows}

        liked_ids = {row.post_id for row in db.session.query(Like.post_id).filter(
            Like.user_id == viewer.id, Like.post_id.in_(post_ids)
        )}
        saved_ids = {row.post_id for row in db.session.query(SavedPost.post_id).filter(
            SavedPost.user_id == viewer.id, SavedPost.post_id.in_(post_ids)
        )}

    like_counts = dict(db.session.query(Like.post_id, func.count(Like.id)).filter(
        Like.post_id.in_(post_ids)
    ).group_by(Like.post_id).all())
    comment_counts = dict(db.session.query(Comment.post_id, func.count(Comment.id)).filter(
        Comment.post_id.in_(post_ids)
    ).group_by(Comment.post_id).all())

    result = []
    for post in posts:
        access = resolve_post_access(post, subscriptions.get(post.creator_id), viewer, now)
        result.append(serialize_post(
            post,
            access,
            liked=post.id in liked_ids,
            saved=post.id in saved_ids,
            likes_count=like_counts.get(post.id, 0),
            comments_count=comment_counts.get(post.id, 0),
        ))
    return result
