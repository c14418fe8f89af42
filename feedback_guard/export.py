# feedback_guard/export.py
"""Export CSV protégé contre l'injection de formules (=, +, -, @)."""

import csv
import io
from typing import Any, Iterable, Sequence

from flask import Response

FORMULA_TRIGGERS = ("=", "+", "-", "@")
# Blancs ASCII seulement (espace, \t, \n, \r, NUL, \v) : pas de \u00a0 ni \u3000
LEADING_BLANKS = " \t\n\r\x00\x0b"


def sanitize_cell(value: str) -> str:
    """
    Préfixe d'une apostrophe la valeur (non modifiée) si son premier caractère
    non blanc déclenche une formule dans un tableur.
    """
    stripped = value.lstrip(LEADING_BLANKS)
    if stripped and stripped[0] in FORMULA_TRIGGERS:
        return "'" + value
    return value


def _cell(value: Any) -> Any:
    # Les nombres restent des nombres ; tout texte passe par sanitize_cell
    if value is None:
        return ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return sanitize_cell(str(value))


def write_csv(header: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    """Sérialise l'en-tête et les lignes (guillemets/échappement par le module csv)."""
    out = io.StringIO()
    writer = csv.writer(out)
    writer.writerow([_cell(h) for h in header])
    for row in rows:
        writer.writerow([_cell(v) for v in row])
    return out.getvalue()


def csv_response(header: Sequence[str], rows: Iterable[Sequence[Any]], filename: str = "export.csv") -> Response:
    """Réponse Flask de téléchargement CSV."""
    safe_name = "".join(c for c in filename if c.isalnum() or c in "._-") or "export.csv"
    return Response(
        write_csv(header, rows),
        content_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{safe_name}"'},
    )
