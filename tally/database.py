import os

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

load_dotenv()

Base = declarative_base()


def database_url() -> str:
    url = os.getenv("DATABASE_URL", "sqlite:///./tally.db")
    # Handle Render's postgres:// -> postgresql://
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def create_db_engine(url: str | None = None, **kwargs):
    return create_engine(url or database_url(), **kwargs)


def create_session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
