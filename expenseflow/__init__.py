"""Application factory and extension initialization for ExpenseFlow."""
from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv
from flask import Flask
from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf import CSRFProtect

from config import config_by_name

# Global extension instances -------------------------------------------------

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
csrf = CSRFProtect()


def create_app(config_name: Optional[str] = None) -> Flask:
    """Flask application factory."""
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)

    config_name = config_name or os.getenv("FLASK_CONFIG", "development")
    config_class = config_by_name.get(config_name.lower())
    if config_class is None:
        raise ValueError(f"Unknown Flask configuration '{config_name}'")

    app.config.from_object(config_class)
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Ensure instance folder exists for SQLite DBs
    os.makedirs(app.instance_path, exist_ok=True)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)

    # Register blueprints
    from expenseflow.admin import admin_bp
    from expenseflow.approvals import approvals_bp
    from expenseflow.employee import employee_bp

    app.register_blueprint(admin_bp)
    app.register_blueprint(approvals_bp)
    app.register_blueprint(employee_bp)

    from expenseflow.errors import ExpenseFlowError
    from expenseflow.utils.helpers import json_response

    @app.errorhandler(ExpenseFlowError)
    def handle_expenseflow_error(error: ExpenseFlowError):
        db.session.rollback()
        return json_response(error.to_dict(), status=error.status_code)

    # User loader for Flask-Login; sessions are issued by the auth service
    from expenseflow.models import User

    @login_manager.user_loader
    def load_user(user_id: str) -> Optional[User]:
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return json_response({"error": "Authentication required."}, status=401)

    @app.shell_context_processor
    def shell_context():
        return {"db": db, "User": User}

    return app
