from sqlalchemy import create_engine, Column, Integer, String, Float, LargeBinary, UniqueConstraint
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
import time

DEFAULT_DATABASE_URL = "sqlite:///./ciphertexts.db"

Base = declarative_base()


class CiphertextBlob(Base):
    """One version of one ciphertext key. Rows are only ever inserted."""
    __tablename__ = "ciphertext_blobs"
    __table_args__ = (UniqueConstraint("key", "version", name="uq_blob_key_version"),)

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String, nullable=False, index=True)
    version = Column(Integer, nullable=False)
    data = Column(LargeBinary, nullable=False)
    created_at = Column(Float, default=time.time)


def create_db_engine(database_url: str = DEFAULT_DATABASE_URL) -> Engine:
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # In-memory SQLite must share one connection or every session sees an empty db
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url)


def init_db(engine: Engine) -> sessionmaker:
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
