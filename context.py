"""
Application context handed to every route through FastAPI dependencies.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from fastapi import Request
from pymongo.database import Database

from emailer import EmailService
from settings import Settings


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the form MongoDB hands back)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass
class AppContext:
    settings: Settings
    db: Database
    mailer: EmailService
    clock: Callable[[], datetime] = utcnow

    def now(self) -> datetime:
        return self.clock()


def get_context(request: Request) -> AppContext:
    return request.app.state.context
