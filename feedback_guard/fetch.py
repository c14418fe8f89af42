# feedback_guard/fetch.py
"""
Appels HTTP sortants (GET JSON) limités à une liste d'hôtes autorisés.

- correspondance exacte et sensible à la casse sur l'hôte (pas de joker, pas de sous-domaine)
- pas de redirection suivie : sinon un hôte autorisé pourrait renvoyer vers n'importe où
- certificat TLS et nom d'hôte vérifiés
- une seule tentative, timeout court
"""

import logging
import os
from functools import lru_cache
from typing import Any, FrozenSet, Iterable, Optional, Union
from urllib.parse import urlsplit

import requests
from dotenv import load_dotenv
from flask import current_app, has_app_context

from .exceptions import BlockedByPolicy, InvalidResponse, TransportError

logger = logging.getLogger("feedback_guard.fetch")

DEFAULT_TIMEOUT = 3  # secondes
DEFAULT_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "feedback-guard",
}


def parse_allowlist(raw: Optional[str]) -> FrozenSet[str]:
    """ "api.github.com, example.org" -> frozenset des hôtes, sans les vides."""
    return frozenset(h.strip() for h in (raw or "").split(",") if h.strip())


@lru_cache(maxsize=1)
def load_allowlist() -> FrozenSet[str]:
    """Liste lue une seule fois depuis API_ALLOWLIST (.env compris), figée ensuite."""
    load_dotenv()
    return parse_allowlist(os.getenv("API_ALLOWLIST", ""))


def host_of(url: str) -> str:
    """Hôte tel qu'écrit dans l'URL (sans userinfo ni port, casse conservée)."""
    try:
        netloc = urlsplit(url).netloc
    except ValueError:
        return ""
    netloc = netloc.rpartition("@")[2]
    if netloc.startswith("["):
        end = netloc.find("]")
        return netloc[: end + 1] if end != -1 else ""
    return netloc.partition(":")[0]


def fetch_json(
    url: str,
    allowlist: Union[str, Iterable[str], None] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Any:
    """
    GET ``url`` et retourne le JSON décodé (objet ou tableau).
    Une allowlist texte ("a.com, b.org") est découpée comme API_ALLOWLIST.
    Sans allowlist explicite : celle de l'application Flask courante,
    sinon celle de API_ALLOWLIST.

    Lève BlockedByPolicy si l'hôte n'est pas autorisé (aucun appel réseau),
    TransportError si l'appel échoue ou si le statut n'est pas 2xx,
    InvalidResponse si le corps n'est pas un objet/tableau JSON.
    """
    if isinstance(allowlist, str):
        allowed = parse_allowlist(allowlist)
    elif allowlist is not None:
        allowed = frozenset(allowlist)
    elif has_app_context() and "api_allowlist" in current_app.extensions:
        allowed = current_app.extensions["api_allowlist"]
    else:
        allowed = load_allowlist()

    host = host_of(url)
    if not host or host not in allowed:
        logger.warning(f"Appel bloqué par l'allowlist : host={host!r}")
        raise BlockedByPolicy()

    try:
        response = requests.get(
            url,
            headers=DEFAULT_HEADERS,
            timeout=timeout,
            allow_redirects=False,
            verify=True,
        )
    except requests.RequestException as e:
        logger.warning(f"Appel échoué vers {host} : {e.__class__.__name__}")
        raise TransportError() from e

    # 3xx compris : une redirection n'est jamais suivie
    if response.status_code >= 300 or response.status_code < 200:
        logger.warning(f"Appel vers {host} : statut HTTP {response.status_code}")
        raise TransportError()

    try:
        data = response.json()
    except ValueError as e:
        raise InvalidResponse() from e

    if not isinstance(data, (dict, list)):
        raise InvalidResponse()
    return data
