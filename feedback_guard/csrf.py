# feedback_guard/csrf.py
"""
Jeton anti-CSRF lié à la session.

Un seul jeton par session, créé au premier accès et jamais régénéré tant que
la session vit. La session est passée explicitement : n'importe quel mapping
mutable convient (``flask.session``, un dict dans les tests...).
"""

import hmac
import secrets
from typing import Any, MutableMapping

SESSION_KEY = "csrf"
TOKEN_BYTES = 32  # 256 bits d'entropie


def issue_or_get_token(session: MutableMapping[str, Any]) -> str:
    """Retourne le jeton de la session, en le créant s'il n'existe pas encore."""
    token = session.get(SESSION_KEY)
    if not isinstance(token, str) or not token:
        token = secrets.token_hex(TOKEN_BYTES)
        session[SESSION_KEY] = token
    return token


def verify(session: MutableMapping[str, Any], submitted: Any) -> bool:
    """
    Compare le jeton soumis au jeton stocké, en temps constant.
    Ne lève jamais d'exception : toute entrée absente ou mal formée donne False.
    """
    stored = session.get(SESSION_KEY)
    if not isinstance(stored, str) or not stored:
        return False
    if not isinstance(submitted, str) or not submitted:
        return False
    # surrogatepass : une chaîne avec surrogate isolé donne False, pas une exception
    return hmac.compare_digest(
        stored.encode("utf-8", "surrogatepass"),
        submitted.encode("utf-8", "surrogatepass"),
    )
