"""Shared API dependencies."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.orm import Session

from media_gate.db.session import get_db
from media_gate.services.text_screening import TextScreener, get_text_screener
from media_gate.services.worker_pool import WorkerPool, get_worker_pool

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]

WorkerPoolDep = Annotated[WorkerPool, Depends(get_worker_pool)]

TextScreenerDep = Annotated[TextScreener, Depends(get_text_screener)]
