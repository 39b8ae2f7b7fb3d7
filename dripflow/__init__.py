from flask import Flask
from flask_cors import CORS
from flask_migrate import Migrate
from dripflow.config import Config
from dripflow.database import db, init_db

migrate = Migrate()


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    # CORS para o painel administrativo
    allowed_origins = [
        'http://localhost:5173',  # Vite dev server
        'http://localhost:3000',
    ]
    env_origins = app.config.get('CORS_ORIGINS', '')
    if env_origins:
        allowed_origins.extend([origin.strip() for origin in env_origins.split(',') if origin.strip()])

    CORS(app,
         resources={r"/api/*": {"origins": allowed_origins}},
         supports_credentials=False,
         allow_headers=["Content-Type", "Authorization"],
         methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"])

    db.init_app(app)
    migrate.init_app(app, db)
    init_db(app)

    # Colaboradores usados pelo execution loop
    from dripflow.services.messaging import HttpMessagingClient
    from dripflow.services.segments import AttributeSegmentMatcher
    app.extensions['dripflow'] = {
        'messaging': HttpMessagingClient.from_config(app.config),
        'segments': AttributeSegmentMatcher(),
        'http_transport': None,
    }

    from dripflow.routes import flows
    app.register_blueprint(flows.flows_bp)

    from dripflow.routes import enrollments
    app.register_blueprint(enrollments.enrollments_bp)

    from dripflow.routes import engine
    app.register_blueprint(engine.engine_bp)

    from dripflow.routes import health
    app.register_blueprint(health.bp)

    return app
