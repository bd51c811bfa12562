from __future__ import annotations

from collections.abc import Generator

from fastapi import Request
from sqlalchemy.orm import Session

from covergen.core.runtime import Runtime


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def get_db(request: Request) -> Generator[Session, None, None]:
    db = request.app.state.runtime.session_factory()
    try:
        yield db
    finally:
        db.close()
