from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, text

from core.orm import Base


class Meeting(Base):
    __tablename__ = "meetings"
    __table_args__ = (Index("idx_meetings_user_created", "user_id", "created_at"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    original_content = Column(Text, nullable=False)
    detected_language = Column(String(10))
    image_url = Column(Text)
    image_key = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))
