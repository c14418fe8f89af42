# feedback_guard/exceptions.py
"""
Erreurs de la couche de garde.

Toutes ces erreurs sont des cas attendus (jeton invalide, trop de requêtes,
API bloquée...), pas des bugs. Chaque erreur porte un message court et fixe
destiné à l'utilisateur, et le code HTTP correspondant.
"""

from typing import Optional


class GuardError(Exception):
    """Erreur de base de la couche de garde."""

    status_code = 500
    message = "Request rejected"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        if message:
            self.message = message


# --- Erreurs qui terminent la requête ---

class Forbidden(GuardError):
    """Jeton CSRF absent ou invalide sur une requête qui modifie l'état."""

    status_code = 403
    message = "CSRF verification failed"


class RateLimited(GuardError):
    """Seuil du limiteur dépassé pour ce couple (action, client)."""

    status_code = 429
    message = "Too many requests. Please try again later."

    def __init__(self, retry_after: int = 0, message: Optional[str] = None):
        super().__init__(message)
        self.retry_after = max(int(retry_after), 0)


class StoreUnavailable(GuardError):
    """Stockage des compteurs illisible ou injoignable : on refuse (fail closed)."""

    status_code = 503
    message = "Service temporarily unavailable."


# --- Erreurs du fetcher (récupérables, gérées par l'appelant) ---

class FetchError(GuardError):
    """Base des échecs d'appel sortant."""

    status_code = 502
    message = "API call failed"


class BlockedByPolicy(FetchError):
    message = "Blocked by API allowlist"


class TransportError(FetchError):
    message = "API request failed"


class InvalidResponse(FetchError):
    message = "Invalid JSON from API"
