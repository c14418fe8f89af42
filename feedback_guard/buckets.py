# feedback_guard/buckets.py
"""
Stockage des compteurs du limiteur.

Le limiteur ne connaît que l'interface ``BucketStore`` (get + compare-and-swap) :
on peut changer de backend (fichiers, base SQL...) sans toucher à sa logique.
Chaque opération ne verrouille qu'une seule clé.
"""

import fcntl
import logging
import os
import re
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .db import SessionLocal
from .exceptions import StoreUnavailable
from .models import RateBucketRow

logger = logging.getLogger("feedback_guard.buckets")

# Les clés sont des sha256 hex : rien d'autre ne doit servir de nom de fichier
_KEY_RE = re.compile(r"[0-9a-f]{64}")
_FILE_RE = re.compile(r"rl_([0-9a-f]{64})\.(?:json|lock)")


def _check_key(key: str) -> str:
    if not isinstance(key, str) or not _KEY_RE.fullmatch(key):
        raise ValueError(f"Clé de compteur invalide : {key!r}")
    return key


# --- Enregistrement d'un compteur ---
class Bucket(BaseModel):
    model_config = ConfigDict(frozen=True)

    reset_at: int = Field(description="Fin de la fenêtre courante (timestamp unix).")
    count: int = Field(ge=0, description="Requêtes comptées dans la fenêtre.")


class BucketStore(ABC):
    """Interface de stockage clé → Bucket, avec mise à jour atomique par clé."""

    @abstractmethod
    def get(self, key: str) -> Optional[Bucket]:
        """Retourne le compteur stocké, ou None s'il n'existe pas."""
        raise NotImplementedError

    @abstractmethod
    def compare_and_swap(self, key: str, expected: Optional[Bucket], new: Bucket) -> bool:
        """
        Écrit ``new`` seulement si la valeur stockée vaut encore ``expected``
        (None = aucune valeur). Retourne False si quelqu'un est passé avant.
        """
        raise NotImplementedError


# ============================================
# BACKEND FICHIERS
# ============================================

class FileBucketStore(BucketStore):
    """
    Un fichier JSON par clé (``rl_<clé>.json``) dans ``directory``.
    Le CAS se fait sous ``flock`` exclusif sur ``rl_<clé>.lock`` : exclusion
    entre threads comme entre processus, et uniquement pour cette clé.

    Les fichiers ne sont jamais supprimés pendant le service : le dossier grossit
    d'un .json et d'un .lock par couple (action, client). ``purge_expired()``
    les retire une fois la fenêtre terminée (à lancer périodiquement, cron...).
    """

    def __init__(self, directory):
        self.directory = Path(directory)
        try:
            self.directory.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailable() from e

    def _path(self, key: str, suffix: str = ".json") -> Path:
        return self.directory / f"rl_{_check_key(key)}{suffix}"

    def _read(self, path: Path) -> Optional[Bucket]:
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        try:
            return Bucket.model_validate_json(raw)
        except ValueError:
            # JSON invalide, UTF-8 invalide ou champs manquants (ValidationError).
            # Même comportement qu'un compteur absent : nouvelle fenêtre
            logger.warning(f"Compteur illisible ignoré : {path.name}")
            return None

    @contextmanager
    def _locked(self, key: str):
        lock_path = self._path(key, ".lock")
        while True:
            lock_file = open(lock_path, "a")
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            # purge_expired a pu supprimer le fichier pendant l'attente :
            # le verrou ne compte que s'il porte sur le fichier encore en place
            try:
                current = os.stat(lock_path)
            except FileNotFoundError:
                current = None
            if current is not None and os.path.samestat(current, os.fstat(lock_file.fileno())):
                break
            lock_file.close()
        try:
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
            lock_file.close()

    def purge_expired(self, now: Optional[float] = None) -> int:
        """
        Supprime les compteurs dont la fenêtre est terminée (et leur .lock).
        Retourne le nombre de clés supprimées.
        """
        now = int(time.time() if now is None else now)
        keys = set()
        for path in self.directory.iterdir():
            match = _FILE_RE.fullmatch(path.name)
            if match:
                keys.add(match.group(1))

        removed = 0
        for key in sorted(keys):
            path = self._path(key)
            try:
                with self._locked(key):
                    bucket = self._read(path)
                    if bucket is not None and now <= bucket.reset_at:
                        continue
                    path.unlink(missing_ok=True)
                    self._path(key, ".lock").unlink(missing_ok=True)
                    removed += 1
            except OSError as e:
                logger.exception(f"Purge impossible : {path.name}")
                raise StoreUnavailable() from e

        if removed:
            logger.info(f"Purge : {removed} compteur(s) expiré(s) supprimé(s)")
        return removed

    def get(self, key: str) -> Optional[Bucket]:
        path = self._path(key)
        try:
            return self._read(path)
        except OSError as e:
            logger.exception(f"Lecture impossible : {path.name}")
            raise StoreUnavailable() from e

    def compare_and_swap(self, key: str, expected: Optional[Bucket], new: Bucket) -> bool:
        path = self._path(key)
        tmp_path = self._path(key, ".json.tmp")
        try:
            with self._locked(key):
                if self._read(path) != expected:
                    return False
                tmp_path.write_text(new.model_dump_json(), encoding="utf-8")
                os.replace(tmp_path, path)
                return True
        except OSError as e:
            logger.exception(f"Écriture impossible : {path.name}")
            raise StoreUnavailable() from e


# ============================================
# BACKEND SQL
# ============================================

class SqlBucketStore(BucketStore):
    """
    Compteurs dans la table ``rate_buckets``.
    Création : la clé primaire garantit qu'un seul INSERT gagne.
    Mise à jour : UPDATE conditionné sur l'ancienne valeur (verrouillage optimiste).
    """

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def get(self, key: str) -> Optional[Bucket]:
        _check_key(key)
        try:
            with self.session_factory() as session:
                row = session.get(RateBucketRow, key)
                if row is None:
                    return None
                return Bucket(reset_at=row.reset_at, count=row.count)
        except SQLAlchemyError as e:
            logger.exception("Lecture du compteur SQL impossible")
            raise StoreUnavailable() from e

    def compare_and_swap(self, key: str, expected: Optional[Bucket], new: Bucket) -> bool:
        _check_key(key)
        with self.session_factory() as session:
            try:
                if expected is None:
                    session.add(RateBucketRow(key=key, reset_at=new.reset_at, count=new.count))
                    session.commit()
                    return True

                result = session.execute(
                    update(RateBucketRow)
                    .where(
                        RateBucketRow.key == key,
                        RateBucketRow.reset_at == expected.reset_at,
                        RateBucketRow.count == expected.count,
                    )
                    .values(reset_at=new.reset_at, count=new.count)
                    .execution_options(synchronize_session=False)
                )
                session.commit()
                return result.rowcount == 1

            except IntegrityError:
                # Un autre INSERT pour la même clé est passé avant
                session.rollback()
                return False
            except SQLAlchemyError as e:
                session.rollback()
                logger.exception("Écriture du compteur SQL impossible")
                raise StoreUnavailable() from e
