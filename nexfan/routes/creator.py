# nexfan/routes/creator.py
from flask import Blueprint, current_app, request, jsonify
from flask_login import current_user
from datetime import datetime
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
import logging

from nexfan import db
from nexfan.errors import Conflict, Forbidden, InvalidInput, NotFound
from nexfan.models import (Comment, CreatorProfile, Like, Payment, PaymentStatus, Plan, Post, PostMedia,
                           PostPlanAccess, Role, Subscription, SubscriptionStatus, User, record_audit)
from nexfan.services.access import VISIBLE, is_subscription_active, resolve_posts, serialize_post
from nexfan.utils.decorators import api_login_required, current_viewer
from nexfan.utils.validation import validate_creator_profile, validate_plan, validate_post

bp = Blueprint('creator', __name__, url_prefix='/api/creator')
logger = logging.getLogger(__name__)


def _current_creator():
    """Perfil de criador do usuário logado"""
    profile = current_user.creator_profile
    if not profile:
        raise Forbidden('Você precisa ser um criador')
    return profile


def _owned_plan(creator, plan_id):
    plan = Plan.query.filter_by(id=plan_id, creator_id=creator.id).first()
    if not plan:
        raise NotFound('Plano não encontrado')
    return plan


def _owned_post(creator, post_id):
    post = db.session.get(Post, post_id)
    if not post:
        raise NotFound('Post não encontrado')
    if post.creator_id != creator.id:
        raise Forbidden('Não autorizado')
    return post


def _check_plan_ids(creator, plan_ids):
    """Todos os planos do post precisam pertencer ao criador"""
    if not plan_ids:
        return
    owned = {p.id for p in Plan.query.filter(Plan.creator_id == creator.id, Plan.id.in_(plan_ids))}
    if set(plan_ids) - owned:
        raise InvalidInput('Dados inválidos', details={'planIds': 'Plano inválido para este criador'})


def _set_post_relations(post, data):
    if 'plan_ids' in data:
        existing = {access.plan_id: access for access in post.plan_access}
        post.plan_access = [existing.get(plan_id) or PostPlanAccess(plan_id=plan_id)
                            for plan_id in data['plan_ids']]
    if 'media' in data:
        post.media = [PostMedia(url=m['url'], type=m['type'], sort_order=index)
                      for index, m in enumerate(data['media'])]


def _live_subscribers(creator, now=None):
    """Assinaturas que liberam acesso agora; ACTIVE com período vencido fica de fora"""
    now = now or datetime.utcnow()
    candidates = creator.subscribers.filter_by(status=SubscriptionStatus.ACTIVE).all()
    return [s for s in candidates if is_subscription_active(s.status, s.current_period_end, now)]


def _active_plan_count(creator):
    return Plan.query.filter_by(creator_id=creator.id, is_active=True).count()


# ==================== PERFIL ====================

@bp.route('', methods=['GET'])
def list_creators():
    """Lista criadores ativos com busca e paginação"""
    page = request.args.get('page', 1, type=int)
    per_page = min(request.args.get('limit', 12, type=int), 50)
    search = (request.args.get('search') or '').strip()

    query = CreatorProfile.query.filter_by(is_active=True)
    if search:
        pattern = f'%{search}%'
        query = query.filter(or_(
            CreatorProfile.display_name.ilike(pattern),
            CreatorProfile.slug.ilike(pattern)
        ))

    pagination = query.order_by(CreatorProfile.created_at.desc())\
        .paginate(page=page, per_page=per_page, error_out=False)

    creators = []
    for creator in pagination.items:
        payload = creator.to_dict()
        payload['minPrice'] = db.session.query(func.min(Plan.price)).filter(
            Plan.creator_id == creator.id,
            Plan.is_active == True
        ).scalar()
        payload['_count'] = {
            'subscribers': len(_live_subscribers(creator)),
            'posts': creator.posts.count(),
        }
        creators.append(payload)

    return jsonify({
        'creators': creators,
        'pagination': {
            'page': page,
            'limit': per_page,
            'total': pagination.total,
            'totalPages': pagination.pages,
        }
    })


@bp.route('', methods=['POST'])
@api_login_required
def create_profile():
    """Cria o perfil de criador e promove o usuário para CREATOR na mesma transação"""
    if current_user.creator_profile:
        raise Conflict('Você já possui um perfil de criador')

    data = validate_creator_profile(request.get_json(silent=True))

    if CreatorProfile.query.filter_by(slug=data['slug']).first():
        raise Conflict('Esta URL já está em uso')

    profile = CreatorProfile(
        user_id=current_user.id,
        display_name=data['display_name'],
        slug=data['slug'],
    )
    profile.social_links = data.get('social_links')
    db.session.add(profile)

    if current_user.role != Role.ADMIN:
        current_user.role = Role.CREATOR
    if 'bio' in data:
        current_user.bio = data['bio']

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict('Esta URL já está em uso')

    logger.info(f"Perfil de criador {profile.slug} criado por {current_user.email}")
    record_audit('CREATOR_PROFILE_CREATED', 'CreatorProfile', profile.id, current_user.id)

    return jsonify({'message': 'Perfil de criador criado com sucesso', 'creatorProfile': profile.to_dict()}), 201


@bp.route('/<slug>', methods=['GET'])
def profile(slug):
    """Perfil público com planos e posts respeitando o acesso do viewer"""
    creator = CreatorProfile.query.filter_by(slug=slug).first()
    if not creator or not creator.is_active:
        raise NotFound('Criador não encontrado')

    viewer = current_viewer()

    plans = creator.plans.filter_by(is_active=True).order_by(Plan.sort_order.asc()).all()
    posts = creator.posts.filter(Post.published_at.isnot(None))\
        .order_by(Post.is_pinned.desc(), Post.published_at.desc())\
        .limit(current_app.config.get('PROFILE_POSTS_LIMIT', 10)).all()

    subscription = None
    if viewer:
        subscription = Subscription.query.filter_by(user_id=viewer.id, creator_id=creator.id).first()

    payload = creator.to_dict()
    payload['plans'] = [plan.to_dict() for plan in plans]
    payload['posts'] = resolve_posts(posts, viewer)
    payload['_count'] = {
        'subscribers': len(_live_subscribers(creator)),
        'posts': creator.posts.count(),
    }
    payload['isOwner'] = viewer is not None and viewer.id == creator.user_id
    payload['subscription'] = {
        'id': subscription.id,
        'planId': subscription.plan_id,
        'status': subscription.status,
        'isActive': is_subscription_active(subscription.status, subscription.current_period_end),
        'currentPeriodEnd': subscription.current_period_end.isoformat(),
    } if subscription else None

    return jsonify({'creator': payload})


@bp.route('/<slug>', methods=['PATCH'])
@api_login_required
def update_profile(slug):
    creator = CreatorProfile.query.filter_by(slug=slug).first()
    if not creator:
        raise NotFound('Criador não encontrado')
    if creator.user_id != current_user.id:
        raise Forbidden('Não autorizado')

    data = validate_creator_profile(request.get_json(silent=True), partial=True)

    if 'slug' in data and data['slug'] != creator.slug:
        if CreatorProfile.query.filter_by(slug=data['slug']).first():
            raise Conflict('Esta URL já está em uso')
        creator.slug = data['slug']

    if 'display_name' in data:
        creator.display_name = data['display_name']
    if 'social_links' in data:
        creator.social_links = data['social_links']
    if 'bio' in data:
        creator.user.bio = data['bio']

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict('Esta URL já está em uso')

    record_audit('CREATOR_PROFILE_UPDATED', 'CreatorProfile', creator.id, current_user.id,
                 {'fields': sorted(data.keys())})
    return jsonify({'creatorProfile': creator.to_dict()})


# ==================== PLANOS ====================

@bp.route('/plan', methods=['GET'])
@api_login_required
def list_plans():
    creator = current_user.creator_profile
    if not creator:
        return jsonify({'plans': []})

    plans = creator.plans.order_by(Plan.sort_order.asc()).all()
    result = []
    for plan in plans:
        payload = plan.to_dict()
        payload['_count'] = {'subscriptions': plan.subscriptions.count()}
        result.append(payload)
    return jsonify({'plans': result})


@bp.route('/plan', methods=['POST'])
@api_login_required
def create_plan():
    creator = _current_creator()
    data = validate_plan(request.get_json(silent=True))

    max_plans = current_app.config.get('MAX_ACTIVE_PLANS', 5)
    if _active_plan_count(creator) >= max_plans:
        raise InvalidInput(f'Limite máximo de {max_plans} planos ativos atingido')

    last_order = db.session.query(func.max(Plan.sort_order)).filter(Plan.creator_id == creator.id).scalar()

    plan = Plan(
        creator_id=creator.id,
        sort_order=(last_order if last_order is not None else -1) + 1,
        **data
    )
    db.session.add(plan)
    db.session.commit()

    logger.info(f"Plano {plan.id} criado por {creator.slug}")
    record_audit('PLAN_CREATED', 'Plan', plan.id, current_user.id,
                 {'name': plan.name, 'price': plan.price, 'currency': plan.currency})

    return jsonify({'message': 'Plano criado com sucesso', 'plan': plan.to_dict()}), 201


@bp.route('/plan/<int:plan_id>', methods=['PATCH'])
@api_login_required
def update_plan(plan_id):
    creator = _current_creator()
    plan = _owned_plan(creator, plan_id)

    body = request.get_json(silent=True) or {}
    data = validate_plan(body, partial=True)

    if 'isActive' in body:
        if not isinstance(body['isActive'], bool):
            raise InvalidInput('Dados inválidos', details={'isActive': 'Valor inválido'})
        if body['isActive'] and not plan.is_active:
            max_plans = current_app.config.get('MAX_ACTIVE_PLANS', 5)
            if _active_plan_count(creator) >= max_plans:
                raise InvalidInput(f'Limite máximo de {max_plans} planos ativos atingido')
        plan.is_active = body['isActive']

    # Preço novo exige um novo Price no Stripe
    if ('price' in data and data['price'] != plan.price) or \
            ('currency' in data and data['currency'] != plan.currency):
        plan.stripe_price_id = None

    for field, value in data.items():
        setattr(plan, field, value)

    db.session.commit()
    record_audit('PLAN_UPDATED', 'Plan', plan.id, current_user.id, {'fields': sorted(data.keys())})

    return jsonify({'plan': plan.to_dict()})


@bp.route('/plan/<int:plan_id>', methods=['DELETE'])
@api_login_required
def delete_plan(plan_id):
    """Desativa o plano; assinaturas existentes continuam valendo"""
    creator = _current_creator()
    plan = _owned_plan(creator, plan_id)

    plan.is_active = False
    db.session.commit()

    record_audit('PLAN_DEACTIVATED', 'Plan', plan.id, current_user.id)
    return jsonify({'success': True})


# ==================== POSTS ====================

@bp.route('/post', methods=['POST'])
@api_login_required
def create_post():
    creator = _current_creator()
    data = validate_post(request.get_json(silent=True))
    _check_plan_ids(creator, data.get('plan_ids'))

    post = Post(
        creator_id=creator.id,
        title=data['title'],
        content=data.get('content'),
        is_public=data['is_public'],
        is_pinned=data.get('is_pinned', False),
        published_at=datetime.utcnow(),
    )
    _set_post_relations(post, data)
    db.session.add(post)
    db.session.commit()

    logger.info(f"Post {post.id} publicado por {creator.slug}")
    record_audit('POST_CREATED', 'Post', post.id, current_user.id, {'isPublic': post.is_public})

    return jsonify({'post': serialize_post(post, VISIBLE)}), 201


@bp.route('/post/<int:post_id>', methods=['GET'])
@api_login_required
def get_post(post_id):
    """Post do próprio criador, sempre com conteúdo completo"""
    creator = _current_creator()
    post = _owned_post(creator, post_id)
    return jsonify({'post': serialize_post(post, VISIBLE, likes_count=post.likes.count(),
                                         comments_count=post.comments.count())})


@bp.route('/post/<int:post_id>', methods=['PATCH'])
@api_login_required
def update_post(post_id):
    creator = _current_creator()
    post = _owned_post(creator, post_id)

    data = validate_post(request.get_json(silent=True), partial=True)
    _check_plan_ids(creator, data.get('plan_ids'))

    for field in ('title', 'content', 'is_public', 'is_pinned'):
        if field in data:
            setattr(post, field, data[field])
    _set_post_relations(post, data)

    db.session.commit()
    record_audit('POST_UPDATED', 'Post', post.id, current_user.id, {'fields': sorted(data.keys())})

    return jsonify({'post': serialize_post(post, VISIBLE, likes_count=post.likes.count(),
                                         comments_count=post.comments.count())})


@bp.route('/post/<int:post_id>', methods=['DELETE'])
@api_login_required
def delete_post(post_id):
    creator = _current_creator()
    post = _owned_post(creator, post_id)

    db.session.delete(post)
    db.session.commit()

    record_audit('POST_DELETED', 'Post', post_id, current_user.id)
    return jsonify({'success': True})


# ==================== ASSINANTES ====================

@bp.route('/subscribers', methods=['GET'])
@api_login_required
def subscribers():
    creator = current_user.creator_profile
    if not creator:
        raise NotFound('Perfil de criador não encontrado')

    status = request.args.get('status', SubscriptionStatus.ACTIVE)
    search = (request.args.get('search') or '').strip()

    query = Subscription.query.filter_by(creator_id=creator.id).join(User, Subscription.user_id == User.id)
    if status != 'ALL':
        query = query.filter(Subscription.status == status)
    if search:
        pattern = f'%{search}%'
        query = query.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern)))

    rows = query.order_by(Subscription.created_at.desc()).all()

    now = datetime.utcnow()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    active = _live_subscribers(creator, now)

    return jsonify({
        'subscribers': [{
            'id': s.id,
            'status': s.status,
            'isActive': is_subscription_active(s.status, s.current_period_end, now),
            'currentPeriodEnd': s.current_period_end.isoformat(),
            'createdAt': s.created_at.isoformat() if s.created_at else None,
            'user': {'id': s.user.id, 'name': s.user.name, 'email': s.user.email, 'avatar': s.user.avatar},
            'plan': {'id': s.plan.id, 'name': s.plan.name, 'price': s.plan.price},
        } for s in rows],
        'stats': {
            'totalSubscribers': len(active),
            'newThisMonth': len([s for s in active if s.created_at and s.created_at >= month_start]),
            'monthlyRevenue': sum(s.plan.price for s in active),
        }
    })


# ==================== GANHOS ====================

def _ledger(creator):
    """Pagamentos das assinaturas do criador"""
    return Payment.query.join(Subscription, Payment.subscription_id == Subscription.id)\
        .filter(Subscription.creator_id == creator.id)


def _ledger_sum(creator, *criteria):
    return db.session.query(func.coalesce(func.sum(Payment.amount), 0))\
        .join(Subscription, Payment.subscription_id == Subscription.id)\
        .filter(Subscription.creator_id == creator.id, *criteria).scalar()


def _month_start(now):
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _transaction(payment):
    date = payment.paid_at or payment.created_at
    return {
        'id': payment.id,
        'user': payment.subscription.user.name or 'Usuário',
        'plan': payment.subscription.plan.name,
        'amount': payment.amount,
        'currency': payment.currency,
        'provider': payment.provider,
        'status': payment.status,
        'date': date.isoformat() if date else None,
    }


@bp.route('/earnings', methods=['GET'])
@api_login_required
def earnings():
    """
    Ganhos do criador calculados a partir do ledger de pagamentos

    Apenas pagamentos COMPLETED entram nos totais; PENDING e PROCESSING
    aparecem como pendentes. Valores em centavos.
    """
    creator = current_user.creator_profile
    if not creator:
        raise NotFound('Perfil de criador não encontrado')

    now = datetime.utcnow()
    completed = Payment.status == PaymentStatus.COMPLETED

    by_provider = db.session.query(Payment.provider, func.sum(Payment.amount))\
        .join(Subscription, Payment.subscription_id == Subscription.id)\
        .filter(Subscription.creator_id == creator.id, completed)\
        .group_by(Payment.provider).all()

    payments = _ledger(creator).order_by(Payment.created_at.desc(), Payment.id.desc()).limit(50).all()

    return jsonify({
        'stats': {
            'totalEarnings': _ledger_sum(creator, completed),
            'thisMonthEarnings': _ledger_sum(creator, completed, Payment.paid_at >= _month_start(now)),
            'pendingEarnings': _ledger_sum(creator, Payment.status.in_(
                [PaymentStatus.PENDING, PaymentStatus.PROCESSING])),
            'byProvider': {provider: total for provider, total in by_provider},
        },
        'transactions': [_transaction(p) for p in payments],
    })


@bp.route('/stats', methods=['GET'])
@api_login_required
def stats():
    creator = current_user.creator_profile
    if not creator:
        raise NotFound('Perfil de criador não encontrado')

    now = datetime.utcnow()
    completed = Payment.status == PaymentStatus.COMPLETED
    active = _live_subscribers(creator, now)
    published = Post.query.filter(Post.creator_id == creator.id, Post.published_at.isnot(None))
    post_ids = [post.id for post in published.with_entities(Post.id)]

    interactions = 0
    if post_ids:
        interactions = Like.query.filter(Like.post_id.in_(post_ids)).count() + \
            Comment.query.filter(Comment.post_id.in_(post_ids)).count()

    recent = sorted(active, key=lambda s: s.created_at or now, reverse=True)[:5]

    return jsonify({
        'stats': {
            'totalEarnings': _ledger_sum(creator, completed),
            'thisMonthEarnings': _ledger_sum(creator, completed, Payment.paid_at >= _month_start(now)),
            'totalSubscribers': len(active),
            'totalPosts': len(post_ids),
            'totalViews': interactions,
        },
        'recentSubscribers': [{
            'id': s.id,
            'name': s.user.name or 'Usuário',
            'avatar': s.user.avatar,
            'plan': s.plan.name,
            'date': s.created_at.isoformat() if s.created_at else None,
        } for s in recent],
    })
