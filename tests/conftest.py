# tests/conftest.py
"""
Fixtures compartilhados para todos os testes do NexFan
"""
import os
import pytest
from datetime import datetime, timedelta

# Forçar variáveis de ambiente ANTES de importar a app
os.environ['DATABASE_URL'] = 'sqlite:///:memory:'
os.environ['SECRET_KEY'] = 'test-secret-key-for-testing'

from nexfan import create_app, db as _db
from nexfan.models import (CreatorProfile, Plan, Post, PostPlanAccess, Role, Subscription,
                           SubscriptionStatus, User)


@pytest.fixture(scope='function')
def app():
    """Cria a aplicação Flask para testes"""
    app = create_app()
    app.config.update({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SERVER_NAME': 'localhost',
        'SECRET_KEY': 'test-secret-key-for-testing',
        'APP_URL': 'http://localhost:5000',
        'STRIPE_SECRET_KEY': None,
        'STRIPE_WEBHOOK_SECRET': None,
        'MERCADOPAGO_ACCESS_TOKEN': None,
        'MERCADOPAGO_WEBHOOK_SECRET': None,
        'MERCADOPAGO_WEBHOOK_URL': None,
    })
    return app


@pytest.fixture(scope='function')
def db(app):
    """Cria e limpa o banco de dados para cada teste"""
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app, db):
    """Cliente de teste HTTP"""
    with app.test_client() as client:
        with app.app_context():
            yield client


@pytest.fixture
def app_context(app, db):
    """Contexto da aplicação"""
    with app.app_context():
        yield app


def _make_user(db, email, name, role=Role.USER, password='TestPass123'):
    user = User(email=email, name=name, role=role)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def fan(db):
    """Usuário comum que assina criadores"""
    return _make_user(db, 'fan@test.com', 'Test Fan')


@pytest.fixture
def other_fan(db):
    return _make_user(db, 'other@test.com', 'Other Fan')


@pytest.fixture
def admin_user(db):
    """Cria um admin de teste"""
    return _make_user(db, 'admin@test.com', 'Admin User', role=Role.ADMIN, password='AdminPass123')


@pytest.fixture
def creator_user(db):
    return _make_user(db, 'creator@test.com', 'Test Creator', role=Role.CREATOR)


@pytest.fixture
def creator(db, creator_user):
    """Perfil de criador de teste"""
    profile = CreatorProfile(
        user_id=creator_user.id,
        display_name='Test Creator',
        slug='testcreator',
    )
    db.session.add(profile)
    db.session.commit()
    return profile


@pytest.fixture
def plan(db, creator):
    """Plano mensal básico"""
    p = Plan(
        creator_id=creator.id,
        name='Básico',
        price=1990,
        currency='BRL',
        benefits=['Posts exclusivos'],
        sort_order=0,
    )
    db.session.add(p)
    db.session.commit()
    return p


@pytest.fixture
def premium_plan(db, creator):
    p = Plan(
        creator_id=creator.id,
        name='Premium',
        price=4990,
        currency='BRL',
        benefits=['Posts exclusivos', 'Vídeos'],
        sort_order=1,
    )
    db.session.add(p)
    db.session.commit()
    return p


def _make_post(db, creator, title, is_public=False, plan_ids=()):
    post = Post(
        creator_id=creator.id,
        title=title,
        content=f'Conteúdo de {title}',
        is_public=is_public,
        published_at=datetime.utcnow(),
    )
    post.plan_access = [PostPlanAccess(plan_id=plan_id) for plan_id in plan_ids]
    db.session.add(post)
    db.session.commit()
    return post


@pytest.fixture
def public_post(db, creator):
    return _make_post(db, creator, 'Post público', is_public=True)


@pytest.fixture
def subscribers_post(db, creator):
    """Post exclusivo para qualquer assinante"""
    return _make_post(db, creator, 'Post para assinantes')


@pytest.fixture
def premium_post(db, creator, premium_plan):
    return _make_post(db, creator, 'Post premium', plan_ids=[premium_plan.id])


@pytest.fixture
def make_subscription(db):
    """Factory de assinaturas com status e período configuráveis"""
    def _make(user, plan, status=SubscriptionStatus.ACTIVE, start=None, end=None):
        start = start or datetime.utcnow()
        sub = Subscription(
            user_id=user.id,
            creator_id=plan.creator_id,
            plan_id=plan.id,
            status=status,
            current_period_start=start,
            current_period_end=end or start + timedelta(days=30),
        )
        db.session.add(sub)
        db.session.commit()
        return sub
    return _make


@pytest.fixture
def active_subscription(make_subscription, fan, plan):
    return make_subscription(fan, plan)


@pytest.fixture
def pending_subscription(make_subscription, fan, plan):
    return make_subscription(fan, plan, status=SubscriptionStatus.PENDING)


@pytest.fixture
def login(client):
    """Helper para fazer login nos testes"""
    def _login(email, password='TestPass123'):
        return client.post('/api/auth/login', json={'email': email, 'password': password})
    return _login
