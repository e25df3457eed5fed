"""Declarative base and column helpers shared by all models."""
import uuid
from datetime import datetime

from sqlalchemy.orm import declarative_base

Base = declarative_base()


def new_id() -> str:
    """UUID string primary key."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.utcnow()
