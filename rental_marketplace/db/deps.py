from collections.abc import Generator

from fastapi import Request
from sqlalchemy.orm import Session


def get_db(request: Request) -> Generator[Session, None, None]:
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_read_db(request: Request) -> Generator[Session, None, None]:
    db = request.app.state.read_session_factory()
    try:
        yield db
    finally:
        db.close()
