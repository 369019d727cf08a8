from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from legalbridge.db import Base


class StoredRecord(Base):
    __tablename__ = "records"
    __table_args__ = (Index("ix_records_collection_created", "collection", "created_at"),)

    collection: Mapped[str] = mapped_column(String(64), primary_key=True)
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    data_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    # ISO-8601 strings, same values as the record's createdAt / updatedAt fields
    created_at: Mapped[str | None] = mapped_column(String(40))
    updated_at: Mapped[str | None] = mapped_column(String(40))
