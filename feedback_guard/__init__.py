import logging
import os
from dotenv import load_dotenv
from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix
from .extensions import csrf, limiter
from .fetch import parse_allowlist

logger = logging.getLogger("feedback_guard")


def create_app(config=None):
    # Charger les variables d'environnement (.env compris)
    load_dotenv()

    app = Flask(__name__)
    app.config.from_mapping(
        SECRET_KEY=os.getenv("SECRET_KEY", "dev"),
        DATABASE_URL=os.getenv("DATABASE_URL", "sqlite:///data.db"),
        RATELIMIT_STORAGE=os.getenv("RATELIMIT_STORAGE", "file"),
        RATELIMIT_STORAGE_DIR=os.getenv("RATELIMIT_STORAGE_DIR", "storage"),
        RATELIMIT_DEFAULT=os.getenv("RATELIMIT_DEFAULT") or None,
        API_ALLOWLIST=os.getenv("API_ALLOWLIST", ""),
        TRUSTED_PROXIES=int(os.getenv("TRUSTED_PROXIES", "0")),
    )
    if config:
        app.config.update(config)

    # --- IP réelle derrière un reverse proxy ---
    if app.config["TRUSTED_PROXIES"] > 0:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=app.config["TRUSTED_PROXIES"])

    # --- Allowlist des API externes (figée pour la vie du processus) ---
    app.extensions["api_allowlist"] = parse_allowlist(app.config["API_ALLOWLIST"])

    # --- Garde : limiteur d'abord, puis CSRF ---
    limiter.init_app(app)
    csrf.init_app(app)

    logger.info(
        f"feedback_guard prêt : stockage={app.config['RATELIMIT_STORAGE']} "
        f"allowlist={len(app.extensions['api_allowlist'])} hôte(s)"
    )
    return app
