import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

Base = declarative_base()
SessionLocal = sessionmaker()

logger = logging.getLogger("feedback_guard.db")


def init_db(app):
    """Crée l'engine à partir de DATABASE_URL et les tables manquantes."""
    url = app.config["DATABASE_URL"]
    logger.info(f"DATABASE_URL utilisé : {url}")
    engine = create_engine(url, echo=app.config.get("SQL_ECHO", False))
    SessionLocal.configure(bind=engine)
    Base.metadata.create_all(engine)
    return engine
