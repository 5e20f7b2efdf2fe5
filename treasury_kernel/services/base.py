"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor and session contract for every writing service.
    Services persist with ``session.flush()`` and never commit or roll back
    the caller's transaction; multi-step operations use savepoints
    (``session.begin_nested()``) so a failed step unwinds only its own work.

Architecture position:
    Kernel > Services -- imperative shell.  Read-only queries live in
    ``treasury_kernel/selectors/``.
"""

from abc import ABC

from sqlalchemy.orm import Session

from treasury_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Contract:
        Accepts the caller's Session and an optional Clock.

    Guarantees:
        - Never calls ``session.commit()``; the caller owns the transaction.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
