import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from dotenv import load_dotenv
import urllib.parse

# Load .env file with explicit UTF-8 encoding
load_dotenv(encoding='utf-8')

DATABASE_URL = os.getenv("DATABASE_URL") or "sqlite:///./loyalty_core.db"
if DATABASE_URL.startswith("postgres"):
    parsed = urllib.parse.urlparse(DATABASE_URL)
    DATABASE_URL = urllib.parse.urlunparse(parsed)

connect_args = {}
if DATABASE_URL.startswith("postgres"):
    connect_args = {"options": "-c timezone=utc"}
elif DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
