from contextlib import contextmanager

from .models import db, MappingSession
from .errors import NotFoundError


@contextmanager
def atomic():
    """
    Commit everything done inside the block, or roll all of it back.

    Blocks nest: only the outermost one commits or rolls back, and callbacks
    queued with ``on_commit`` run after that commit.
    """
    info = db.session.info
    depth = info.get('atomic_depth', 0)
    info['atomic_depth'] = depth + 1
    try:
        yield db.session
        if depth == 0:
            db.session.commit()
    except Exception:
        if depth == 0:
            db.session.rollback()
            info.pop('on_commit', None)
        raise
    finally:
        info['atomic_depth'] = depth

    if depth == 0:
        for callback, args in info.pop('on_commit', []):
            callback(*args)


def on_commit(callback, *args):
    """Run ``callback(*args)`` once the enclosing atomic block commits, or now if there is none."""
    if db.session.info.get('atomic_depth', 0) == 0:
        callback(*args)
    else:
        db.session.info.setdefault('on_commit', []).append((callback, args))


def lock_session(session_id: str) -> MappingSession:
    """
    Load a session row under SELECT ... FOR UPDATE.

    Holding this lock for the rest of the transaction serializes one-shot
    operations on the same session (PostgreSQL; SQLite serializes writers
    on its own).
    """
    session = (
        MappingSession.query
        .filter_by(id=session_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if session is None:
        raise NotFoundError(
            f"Session {session_id} does not exist",
            code='unknown_session',
            details={'session_id': session_id}
        )
    return session
