# nexfan/routes/posts.py
from flask import Blueprint, current_app, request, jsonify
from sqlalchemy.exc import IntegrityError
import logging

from nexfan import db
from nexfan.errors import Forbidden, NotFound, Unauthorized
from nexfan.models import Comment, Like, Post, SavedPost, Subscription, SubscriptionStatus, record_audit
from nexfan.services.access import is_subscription_active, resolve_post_access, resolve_posts
from nexfan.utils.validation import validate_comment
from nexfan.utils.decorators import api_login_required, current_viewer

bp = Blueprint('posts', __name__, url_prefix='/api')
logger = logging.getLogger(__name__)


def _get_published_post(post_id):
    post = db.session.get(Post, post_id)
    if not post or post.published_at is None or not post.creator.is_active:
        raise NotFound('Post não encontrado')
    return post


def _check_comments_access(post, viewer):
    """Comentários seguem o acesso ao conteúdo do post"""
    if post.is_public:
        return
    if viewer is None:
        raise Unauthorized()
    if viewer.is_admin or viewer.id == post.creator.user_id:
        return

    subscription = Subscription.query.filter_by(user_id=viewer.id, creator_id=post.creator_id).first()
    if resolve_post_access(post, subscription, viewer).is_locked:
        raise Forbidden('Assine um plano com acesso a este post para ver os comentários')


@bp.route('/feed')
@api_login_required
def feed():
    """Posts recentes dos criadores com assinatura válida"""
    viewer = current_viewer()

    candidates = Subscription.query.filter_by(user_id=viewer.id, status=SubscriptionStatus.ACTIVE).all()
    subscriptions = [s for s in candidates if is_subscription_active(s.status, s.current_period_end)]

    if not subscriptions:
        return jsonify({'posts': [], 'subscriptions': []})

    creator_ids = [s.creator_id for s in subscriptions]
    posts = Post.query.filter(
        Post.creator_id.in_(creator_ids),
        Post.published_at.isnot(None)
    ).order_by(Post.published_at.desc()).limit(current_app.config.get('FEED_LIMIT', 50)).all()

    # Posts de planos que o usuário não assina ficam fora do feed
    visible = [p for p in resolve_posts(posts, viewer) if p['isPublic'] or not p['isLocked']]

    return jsonify({
        'posts': visible,
        'subscriptions': [{
            'id': s.id,
            'creator': {
                'id': s.creator.id,
                'displayName': s.creator.display_name,
                'slug': s.creator.slug,
                'avatar': s.creator.user.avatar if s.creator.user else None,
            },
            'plan': {'id': s.plan.id, 'name': s.plan.name},
        } for s in subscriptions],
    })


@bp.route('/post/<int:post_id>')
def get_post(post_id):
    post = _get_published_post(post_id)
    return jsonify({'post': resolve_posts([post], current_viewer())[0]})


@bp.route('/post/<int:post_id>/like', methods=['POST'])
@api_login_required
def toggle_like(post_id):
    post = _get_published_post(post_id)
    viewer = current_viewer()

    existing = Like.query.filter_by(post_id=post.id, user_id=viewer.id).first()
    if existing:
        db.session.delete(existing)
        db.session.commit()
        liked = False
    else:
        db.session.add(Like(post_id=post.id, user_id=viewer.id))
        try:
            db.session.commit()
        except IntegrityError:
            # Duplo clique: o like já foi gravado
            db.session.rollback()
        liked = True

    return jsonify({
        'liked': liked,
        'likesCount': Like.query.filter_by(post_id=post.id).count(),
        'message': 'Post curtido!' if liked else 'Like removido',
    })


@bp.route('/post/<int:post_id>/save', methods=['POST'])
@api_login_required
def save_post(post_id):
    post = _get_published_post(post_id)
    viewer = current_viewer()

    if not SavedPost.query.filter_by(post_id=post.id, user_id=viewer.id).first():
        db.session.add(SavedPost(post_id=post.id, user_id=viewer.id))
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()

    return jsonify({'saved': True})


@bp.route('/post/<int:post_id>/save', methods=['DELETE'])
@api_login_required
def unsave_post(post_id):
    viewer = current_viewer()
    SavedPost.query.filter_by(post_id=post_id, user_id=viewer.id).delete()
    db.session.commit()
    return jsonify({'saved': False})


@bp.route('/user/saved-posts')
@api_login_required
def saved_posts():
    """Posts salvos; o conteúdo continua sujeito ao acesso atual"""
    viewer = current_viewer()
    posts = Post.query.join(SavedPost, SavedPost.post_id == Post.id)\
        .filter(SavedPost.user_id == viewer.id)\
        .order_by(SavedPost.created_at.desc()).all()
    return jsonify({'posts': resolve_posts(posts, viewer)})


# ==================== COMENTÁRIOS ====================

@bp.route('/post/<int:post_id>/comment', methods=['GET'])
def list_comments(post_id):
    """Comentários do post, mais recentes primeiro"""
    post = _get_published_post(post_id)
    _check_comments_access(post, current_viewer())

    page = request.args.get('page', 1, type=int)
    per_page = min(request.args.get('limit', 20, type=int), 50)

    pagination = Comment.query.filter_by(post_id=post.id)\
        .order_by(Comment.created_at.desc(), Comment.id.desc())\
        .paginate(page=page, per_page=per_page, error_out=False)

    return jsonify({
        'comments': [comment.to_dict() for comment in pagination.items],
        'pagination': {
            'page': page,
            'limit': per_page,
            'total': pagination.total,
            'totalPages': pagination.pages,
        }
    })


@bp.route('/post/<int:post_id>/comment', methods=['POST'])
@api_login_required
def add_comment(post_id):
    post = _get_published_post(post_id)
    viewer = current_viewer()
    _check_comments_access(post, viewer)

    data = validate_comment(request.get_json(silent=True))

    comment = Comment(post_id=post.id, user_id=viewer.id, content=data['content'])
    db.session.add(comment)
    db.session.commit()

    logger.info(f"Comentário {comment.id} no post {post.id} por {viewer.id}")

    return jsonify({'comment': comment.to_dict(), 'message': 'Comentário adicionado!'}), 201


@bp.route('/post/<int:post_id>/comment/<int:comment_id>', methods=['DELETE'])
@api_login_required
def delete_comment(post_id, comment_id):
    """Autor do comentário, dono do post ou admin"""
    comment = Comment.query.filter_by(id=comment_id, post_id=post_id).first()
    if not comment:
        raise NotFound('Comentário não encontrado')

    viewer = current_viewer()
    if viewer.id not in (comment.user_id, comment.post.creator.user_id) and not viewer.is_admin:
        raise Forbidden('Você não tem permissão para excluir este comentário')

    author_id = comment.user_id
    db.session.delete(comment)
    db.session.commit()

    if viewer.id != author_id:
        record_audit('COMMENT_DELETED', 'Comment', comment_id, viewer.id, {'postId': post_id})

    return jsonify({'success': True, 'message': 'Comentário excluído'})
