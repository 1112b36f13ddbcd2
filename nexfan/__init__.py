# nexfan/__init__.py
import logging
import os

from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_migrate import Migrate
from flask_cors import CORS

db = SQLAlchemy()
login_manager = LoginManager()
migrate = Migrate()

def create_app(config_object='config.Config'):
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        level=app.config.get('LOG_LEVEL', 'INFO')
    )

    # Inicializar extensões
    db.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db)
    CORS(app, supports_credentials=True)

    # Importar modelos e configurar user_loader
    from nexfan.models.user import User

    @login_manager.user_loader
    def load_user(user_id):
        user = db.session.get(User, int(user_id))
        if user and not user.is_active:
            return None
        return user

    # API JSON: sem redirect para página de login
    @login_manager.unauthorized_handler
    def unauthorized():
        from nexfan.errors import Unauthorized
        raise Unauthorized()

    from nexfan.errors import register_error_handlers
    register_error_handlers(app)

    # Registrar blueprints
    from nexfan.routes import auth, subscribe, creator, posts, reports, webhooks, admin
    app.register_blueprint(auth.bp)
    app.register_blueprint(subscribe.bp)
    app.register_blueprint(creator.bp)
    app.register_blueprint(posts.bp)
    app.register_blueprint(reports.bp)
    app.register_blueprint(webhooks.bp)
    app.register_blueprint(admin.bp)

    # Criar diretórios necessários
    os.makedirs(os.path.join(app.root_path, '..', 'instance'), exist_ok=True)

    return app
