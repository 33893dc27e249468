import logging
from typing import Any, Optional

from flask import Flask, current_app, jsonify
from flask_login import LoginManager

from .config import Settings
from .datastore import DataStore
from .rendering import Renderer
from .repository import PostRepository, build_repository


__all__ = ["create_app", "build_repository", "DataStore", "PostRepository", "Settings"]


login_manager = LoginManager()


def create_app(
    settings: Optional[Settings] = None,
    *,
    notifier: Optional[Any] = None,
    renderer: Optional[Renderer] = None,
) -> Flask:
    settings = settings or Settings.from_env()
    app = Flask(__name__)

    app.config["SECRET_KEY"] = settings.secret_key
    app.config["QUILL_SETTINGS"] = settings
    logging.getLogger(__name__).setLevel(settings.log_level)

    datastore = DataStore(settings.data_path)
    app.extensions["datastore"] = datastore
    app.extensions["repository"] = build_repository(
        datastore,
        settings,
        notifier=notifier,
        renderer=renderer,
    )

    login_manager.init_app(app)

    from .api import bp as api_bp

    app.register_blueprint(api_bp, url_prefix="/api")

    @app.teardown_appcontext
    def close_connection(exc: Optional[BaseException]) -> None:
        datastore.close()

    return app


@login_manager.user_loader
def load_user(user_id: str):
    datastore: DataStore = current_app.extensions.get("datastore")
    if not datastore:
        return None
    return datastore.load_user(user_id)


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "unauthorized", "message": "Login required"}), 401
