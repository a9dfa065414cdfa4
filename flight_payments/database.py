from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from flight_payments.config import get_payment_settings

Base = declarative_base()


def engine_options(database_url: str) -> Dict[str, Any]:
    # sqlite is shared across the threadpool FastAPI runs sync routes on
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_recycle": 300}


DATABASE_URL = get_payment_settings().database_url

engine = create_engine(DATABASE_URL, **engine_options(DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
