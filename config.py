import os
from dotenv import load_dotenv

load_dotenv()

# Diretório base do projeto
basedir = os.path.abspath(os.path.dirname(__file__))

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-key-change-in-production'

    # Database - Usar caminho absoluto
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'instance', 'nexfan.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # URL pública usada nos redirects de checkout
    APP_URL = os.environ.get('APP_URL') or 'http://localhost:5000'

    # Stripe (cartão)
    STRIPE_PUBLIC_KEY = os.environ.get('STRIPE_PUBLIC_KEY')
    STRIPE_SECRET_KEY = os.environ.get('STRIPE_SECRET_KEY')
    STRIPE_WEBHOOK_SECRET = os.environ.get('STRIPE_WEBHOOK_SECRET')

    # Mercado Pago (PIX)
    MERCADOPAGO_ACCESS_TOKEN = os.environ.get('MERCADOPAGO_ACCESS_TOKEN')
    MERCADOPAGO_WEBHOOK_SECRET = os.environ.get('MERCADOPAGO_WEBHOOK_SECRET')
    MERCADOPAGO_WEBHOOK_URL = os.environ.get('MERCADOPAGO_WEBHOOK_URL')
    MERCADOPAGO_API_URL = 'https://api.mercadopago.com'

    # Regras da plataforma
    MAX_ACTIVE_PLANS = 5
    FEED_LIMIT = 50
    PROFILE_POSTS_LIMIT = 10

    # Polling de confirmação após o checkout
    CONFIRMATION_MAX_ATTEMPTS = 10
    CONFIRMATION_DELAY_UNIT = 1.0  # segundos por unidade de espera

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
