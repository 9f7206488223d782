from sqlmodel import SQLModel, create_engine, Session
from resell_core.config import settings


def build_engine(url: str, echo: bool = False):
    if url.startswith("sqlite"):
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    return create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,      # ✅ checks dead connections
        pool_recycle=1800        # ✅ refresh every 30 min
    )


engine = build_engine(settings.database_url, echo=settings.db_echo)


def create_db_and_tables(bind=None):
    from resell_core import models  # noqa: F401 (registers tables)
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    with Session(engine) as session:
        yield session
