from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from flask import Flask
from flask_cors import CORS

from unobill.api.routes import STORE_EXTENSION, api_bp
from unobill.config import Config
from unobill.db.repository import PersistenceSubscriber, RecordRepository, load_state
from unobill.domain.state import StateStore


def create_app(config_overrides: Optional[Mapping[str, Any]] = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)
    CORS(app)  # ok for a single local client

    logging.basicConfig(level=logging.DEBUG if app.debug else logging.INFO)

    repo = RecordRepository(app.config.get("DATABASE_URL", ""))
    store = StateStore(load_state(repo, app.config["DEFAULT_MEMBERS"]))
    store.subscribe(PersistenceSubscriber(repo))
    app.extensions[STORE_EXTENSION] = store

    app.register_blueprint(api_bp)
    return app
