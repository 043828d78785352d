"""
event_scoring/orm/contestant.py
Contestants and their category entries.
"""
from datetime import datetime

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from event_scoring.orm.base import Base


class Contestant(Base):
    __tablename__ = "contestants"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False, default="default", index=True)
    contest_id = Column(Integer, ForeignKey("contests.id", ondelete="SET NULL"), nullable=True, index=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=True)
    contestant_number = Column(Integer, nullable=True)
    bio = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    contest = relationship("Contest")
    category_links = relationship(
        "CategoryContestant", back_populates="contestant", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Contestant(id={self.id}, name={self.name})>"

    def to_summary(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "contestant_number": self.contestant_number,
            "bio": self.bio,
            "contest_id": self.contest_id,
        }


class CategoryContestant(Base):
    """A contestant entered in a category. One row per (category, contestant)."""
    __tablename__ = "category_contestants"

    category_id = Column(Integer, ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True)
    contestant_id = Column(Integer, ForeignKey("contestants.id", ondelete="CASCADE"), primary_key=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    category = relationship("Category")
    contestant = relationship("Contestant", back_populates="category_links")

    def to_dict(self):
        return {
            "category_id": self.category_id,
            "contestant_id": self.contestant_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "category": self.category.to_summary() if self.category else None,
            "contestant": self.contestant.to_summary() if self.contestant else None,
        }
