from sqlalchemy import Column, DateTime, Integer, String, Text, text

from core.orm import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Subject identifier issued by the OAuth identity provider
    open_id = Column(String(64), nullable=False, unique=True)
    name = Column(Text)
    email = Column(String(320))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    last_signed_in = Column(DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))
