import logging
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from cradle.configs import DB_URI, DEBUG
from cradle.core.exceptions import TransientDependencyError

logger = logging.getLogger(__name__)


class CradleBase:
    @classmethod
    def get(cls, session, id, lock=False):
        query = session.query(cls).filter(cls.id == id)
        if lock:
            query = query.with_for_update()
        return query.first()

Base = declarative_base(cls=CradleBase)


class Database:
    """Explicitly constructed persistence handle.

    `transaction()` is the unit of work every core operation runs in. Pass
    an already open session to join the caller's transaction instead of
    opening a new one; only the outermost block commits.
    """

    def __init__(self, uri=DB_URI, echo=DEBUG):
        engine_kwargs = {'echo': echo}
        if uri.startswith('sqlite'):
            engine_kwargs['connect_args'] = {'check_same_thread': False}
            if ':memory:' in uri or uri == 'sqlite://':
                engine_kwargs['poolclass'] = StaticPool
        else:
            engine_kwargs['client_encoding'] = 'utf8'
        self.uri = uri
        self.engine = create_engine(uri, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False)

    def init(self):
        # Import models so they are registered on Base before create_all
        from cradle.core import models  # noqa: F401
        Base.metadata.create_all(bind=self.engine)
        return self

    def drop(self):
        Base.metadata.drop_all(bind=self.engine)

    @contextmanager
    def transaction(self, session=None):
        if session is not None:
            yield session
            return
        session = self.Session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Transaction rolled back: {e}")
            raise TransientDependencyError(f"Persistence failure: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def with_transaction(self, fn, session=None):
        with self.transaction(session) as s:
            return fn(s)
