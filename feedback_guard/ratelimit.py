# feedback_guard/ratelimit.py
"""
Limiteur de requêtes à fenêtre fixe, par couple (action, client).

- La clé du compteur est sha256("action|client") : l'IP n'est jamais stockée
  telle quelle et la clé peut servir de nom de fichier.
- La fenêtre est réinitialisée quand ``now > reset_at`` (strictement).
- Chaque requête évaluée est comptée, y compris celle qui est refusée.
"""

import enum
import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from limits import parse as parse_rate_limit

from .buckets import Bucket, BucketStore
from .exceptions import StoreUnavailable

logger = logging.getLogger("feedback_guard.ratelimit")

# Au-delà, le stockage est considéré comme indisponible (on refuse)
MAX_CAS_ATTEMPTS = 50


class Decision(str, enum.Enum):
    ALLOWED = "allowed"
    LIMITED = "limited"


@dataclass(frozen=True)
class RateLimitResult:
    decision: Decision
    count: int
    limit: int
    reset_at: int

    @property
    def allowed(self) -> bool:
        return self.decision is Decision.ALLOWED

    def retry_after(self, now: Optional[float] = None) -> int:
        """Secondes avant la prochaine fenêtre (0 si elle est déjà ouverte)."""
        now = int(time.time() if now is None else now)
        return max(self.reset_at - now + 1, 0)


def parse_limit(value: str) -> Tuple[int, int]:
    """
    "30 per minute" -> (30, 60), "10 per 5 minutes" -> (10, 300).
    Même format (et même parseur) que les limites de Flask-Limiter.
    """
    try:
        item = parse_rate_limit(value or "")
    except ValueError as e:
        raise ValueError(f"Limite invalide : {value!r} (attendu : '<n> per <unité>')") from e
    window = item.get_expiry()
    if window <= 0:
        raise ValueError(f"Fenêtre invalide : {value!r}")
    return item.amount, window


def bucket_key(action_key: str, client_identifier: str) -> str:
    return hashlib.sha256(f"{action_key}|{client_identifier}".encode("utf-8")).hexdigest()


def check_and_increment(
    store: BucketStore,
    action_key: str,
    client_identifier: str,
    max_requests: int,
    window_seconds: int,
    clock: Callable[[], float] = time.time,
) -> RateLimitResult:
    """
    Compte une requête et dit si elle passe.

    Lecture / calcul / compare-and-swap, recommencé tant qu'une autre requête
    sur la même clé écrit entre-temps : aucune incrémentation n'est perdue.
    Les erreurs du stockage remontent (StoreUnavailable) : l'appelant refuse.
    """
    if max_requests < 0:
        raise ValueError("max_requests doit être >= 0")
    if window_seconds <= 0:
        raise ValueError("window_seconds doit être > 0")

    key = bucket_key(action_key, client_identifier)

    for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
        current = store.get(key)
        now = int(clock())

        if current is None or now > current.reset_at:
            window = Bucket(reset_at=now + window_seconds, count=0)
        else:
            window = current
        updated = Bucket(reset_at=window.reset_at, count=window.count + 1)

        if store.compare_and_swap(key, current, updated):
            break
        logger.debug(f"Conflit CAS sur {key[:12]} (tentative {attempt})")
    else:
        logger.error(f"Compteur {key[:12]} : {MAX_CAS_ATTEMPTS} conflits CAS, requête refusée")
        raise StoreUnavailable()

    decision = Decision.LIMITED if updated.count > max_requests else Decision.ALLOWED
    if decision is Decision.LIMITED:
        logger.warning(f"Limite atteinte : action={action_key} bucket={key[:12]} count={updated.count}/{max_requests}")

    return RateLimitResult(
        decision=decision,
        count=updated.count,
        limit=max_requests,
        reset_at=updated.reset_at,
    )
