from sqlmodel import SQLModel, Field


class DailySequence(SQLModel, table=True):
    """One counter row per prefix and day, e.g. ``ORD20261019``."""

    __tablename__ = "daily_sequence"

    scope: str = Field(primary_key=True)
    value: int = Field(default=0)
