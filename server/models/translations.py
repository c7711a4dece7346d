from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, text

from core.orm import Base


class Translation(Base):
    __tablename__ = "translations"
    __table_args__ = (
        UniqueConstraint("meeting_id", "target_language", name="uq_translations_meeting_language"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    meeting_id = Column(Integer, ForeignKey("meetings.id", ondelete="CASCADE"), nullable=False)
    target_language = Column(String(64), nullable=False)
    translated_content = Column(Text, nullable=False)
    summary = Column(Text)
    # Full structured summary (MeetingSummary) serialized as JSON
    action_items = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))
