"""
event_scoring/orm/judge.py
Judge roster and the implicit category membership relation.
"""
from datetime import datetime

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from event_scoring.orm.base import Base


class Judge(Base):
    __tablename__ = "judges"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False, default="default", index=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(50), nullable=True)
    bio = Column(Text, nullable=True)
    is_head_judge = Column(Boolean, default=False, nullable=False)
    certified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    category_links = relationship("CategoryJudge", back_populates="judge", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Judge(id={self.id}, name={self.name})>"

    def to_summary(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "bio": self.bio,
            "is_head_judge": self.is_head_judge,
        }


class CategoryJudge(Base):
    """
    Roster link placing a judge on a category.

    Implies an assignment without being one: it has no status, priority
    or notes of its own.
    """
    __tablename__ = "category_judges"

    category_id = Column(Integer, ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True)
    judge_id = Column(Integer, ForeignKey("judges.id", ondelete="CASCADE"), primary_key=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    category = relationship("Category", back_populates="judge_links")
    judge = relationship("Judge", back_populates="category_links")
