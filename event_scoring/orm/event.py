"""
event_scoring/orm/event.py
Event → Contest → Category hierarchy.

Contest.event_id and Category.contest_id are nullable: a category whose
parent chain is incomplete exists, but cannot be surfaced as an assignment.
"""
from datetime import datetime

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from event_scoring.orm.base import Base


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False, default="default", index=True)
    name = Column(String(200), nullable=False)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    archived = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    contests = relationship("Contest", back_populates="event")

    def to_summary(self):
        return {
            "id": self.id,
            "name": self.name,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
        }


class Contest(Base):
    __tablename__ = "contests"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="SET NULL"), nullable=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    event = relationship("Event", back_populates="contests")
    categories = relationship("Category", back_populates="contest")

    def to_summary(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
        }


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    contest_id = Column(Integer, ForeignKey("contests.id", ondelete="SET NULL"), nullable=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    score_cap = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    contest = relationship("Contest", back_populates="categories")
    judge_links = relationship("CategoryJudge", back_populates="category", cascade="all, delete-orphan")

    def to_summary(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "score_cap": self.score_cap,
        }
