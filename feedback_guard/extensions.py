# feedback_guard/extensions.py
# Extensions Flask partagées (évite les imports circulaires).
# On crée les instances ici, on les initialise dans __init__.py avec init_app().
#
# Ces classes ne font que relier Flask (session, request, réponses HTTP) aux
# fonctions de csrf.py / ratelimit.py, qui reçoivent tout en paramètre.

import logging
from flask import Response, current_app, request, session

from .buckets import FileBucketStore, SqlBucketStore
from .csrf import issue_or_get_token, verify
from .db import init_db
from .exceptions import Forbidden, GuardError, RateLimited, StoreUnavailable
from .ratelimit import RateLimitResult, check_and_increment, parse_limit

logger = logging.getLogger("feedback_guard.extensions")

SAFE_METHODS = {"GET", "HEAD", "OPTIONS", "TRACE"}


def client_identifier() -> str:
    """IP du client (corrigée par ProxyFix si TRUSTED_PROXIES > 0)."""
    return request.remote_addr or "unknown"


def guard_error_response(error: GuardError):
    """Réponse texte courte, sans trace : 403 / 429 / 503."""
    response = Response(error.message, status=error.status_code, mimetype="text/plain")
    if isinstance(error, RateLimited) and error.retry_after:
        response.headers["Retry-After"] = str(error.retry_after)
    return response


def _current_view():
    if request.endpoint is None:
        return None
    return current_app.view_functions.get(request.endpoint)


# ============================================
# RATE LIMITER
# ============================================

class Limiter:
    """
    Limite le nombre de requêtes par IP pour éviter le spam et le brute-force.
    Règle par route avec @limiter.limit(...), règle globale via RATELIMIT_DEFAULT.
    """

    EXTENSION_KEY = "feedback_guard.limiter"

    def init_app(self, app):
        backend = app.config.get("RATELIMIT_STORAGE", "file")
        if backend == "file":
            store = FileBucketStore(app.config["RATELIMIT_STORAGE_DIR"])
        elif backend == "sql":
            init_db(app)
            store = SqlBucketStore()
        else:
            raise ValueError(f"RATELIMIT_STORAGE inconnu : {backend!r}")

        default = app.config.get("RATELIMIT_DEFAULT")
        app.extensions[self.EXTENSION_KEY] = {
            "store": store,
            "default": parse_limit(default) if default else None,
        }

        app.before_request(self._check_request)
        app.register_error_handler(RateLimited, guard_error_response)
        app.register_error_handler(StoreUnavailable, guard_error_response)

    @property
    def store(self):
        return current_app.extensions[self.EXTENSION_KEY]["store"]

    def limit(self, action_key: str, max_requests: int, window_seconds: int):
        """Décorateur de vue : max_requests par window_seconds et par client."""
        def decorator(view):
            limits = list(getattr(view, "_guard_limits", []))
            limits.append((action_key, max_requests, window_seconds))
            view._guard_limits = limits
            return view
        return decorator

    def exempt(self, view):
        """Exclut la vue de la règle globale (les règles @limit restent actives)."""
        view._guard_limit_exempt = True
        return view

    def hit(self, action_key: str, max_requests: int, window_seconds: int, client: str = None) -> RateLimitResult:
        """Compte la requête ; lève RateLimited si la limite est dépassée."""
        result = check_and_increment(
            self.store,
            action_key,
            client or client_identifier(),
            max_requests,
            window_seconds,
        )
        if not result.allowed:
            raise RateLimited(retry_after=result.retry_after())
        return result

    def _check_request(self):
        view = _current_view()
        if view is None:
            return None

        limits = list(getattr(view, "_guard_limits", []))
        default = current_app.extensions[self.EXTENSION_KEY]["default"]
        if not limits and default and not getattr(view, "_guard_limit_exempt", False):
            limits.append((f"default:{request.endpoint}", *default))

        for action_key, max_requests, window_seconds in limits:
            self.hit(action_key, max_requests, window_seconds)
        return None


# ============================================
# PROTECTION CSRF
# ============================================

class CsrfProtect:
    """
    Jeton secret unique par session. Chaque formulaire et requête AJAX qui
    modifie l'état doit le renvoyer (champ "csrf" ou en-tête X-CSRFToken).
    """

    FORM_FIELD = "csrf"
    HEADER = "X-CSRFToken"

    def init_app(self, app):
        app.before_request(self._check_request)
        app.register_error_handler(Forbidden, guard_error_response)
        app.jinja_env.globals["csrf_token"] = lambda: issue_or_get_token(session)

    def exempt(self, view):
        view._guard_csrf_exempt = True
        return view

    def protect(self):
        """Vérifie le jeton de la requête courante ; lève Forbidden sinon."""
        submitted = request.form.get(self.FORM_FIELD) or request.headers.get(self.HEADER)
        if not verify(session, submitted):
            logger.warning(f"CSRF refusé : endpoint={request.endpoint} client={client_identifier()}")
            raise Forbidden()

    def _check_request(self):
        issue_or_get_token(session)
        if request.method in SAFE_METHODS:
            return None
        view = _current_view()
        if view is None or getattr(view, "_guard_csrf_exempt", False):
            return None
        self.protect()
        return None


# --- Instances partagées ---
limiter = Limiter()
csrf = CsrfProtect()
