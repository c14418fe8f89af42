# tests/conftest.py

import sys
from pathlib import Path

# --- Rendre le package "feedback_guard" importable ---
ROOT_DIR = Path(__file__).resolve().parent.parent
sys.path.append(str(ROOT_DIR))

import pytest
from flask import jsonify, request, session
from feedback_guard import create_app
from feedback_guard.buckets import FileBucketStore
from feedback_guard.csrf import issue_or_get_token
from feedback_guard.export import csv_response
from feedback_guard.extensions import csrf, limiter

COMMENT_LIMIT = 3


def make_app(tmp_path, **overrides):
    """Application de test avec quelques routes qui utilisent la garde."""
    config = {
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "RATELIMIT_STORAGE": "file",
        "RATELIMIT_STORAGE_DIR": str(tmp_path / "storage"),
        "RATELIMIT_DEFAULT": None,
        "API_ALLOWLIST": "api.github.com",
    }
    config.update(overrides)
    app = create_app(config)

    @app.route("/comments", methods=["GET", "POST"])
    @limiter.limit("comment", COMMENT_LIMIT, 60)
    def comments():
        if request.method == "POST":
            return jsonify({"message": "ok"}), 201
        return jsonify({"csrf": issue_or_get_token(session)})

    @app.route("/webhook", methods=["POST"])
    @csrf.exempt
    def webhook():
        return jsonify({"message": "reçu"}), 200

    @app.route("/ping")
    def ping():
        return "pong"

    @app.route("/health")
    @limiter.exempt
    def health():
        return "ok"

    @app.route("/export")
    def export():
        rows = [
            (1, "2024-01-01T00:00:00+00:00", "Alice", "=HYPERLINK(\"http://evil\")"),
            (2, "2024-01-02T00:00:00+00:00", "Bob", "Merci, super site"),
        ]
        return csv_response(["id", "created_at", "name", "comment"], rows, filename="comments.csv")

    return app


# --- Application Flask ---
@pytest.fixture
def app(tmp_path):
    """Application neuve par test, compteurs dans un dossier temporaire."""
    return make_app(tmp_path)


# --- Client HTTP Flask ---
@pytest.fixture
def client(app):
    return app.test_client()


# --- Stockage fichiers des compteurs ---
@pytest.fixture
def store(tmp_path):
    return FileBucketStore(tmp_path / "buckets")
