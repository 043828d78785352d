"""
event_scoring/orm/assignment.py
Explicit judge assignment records.

Invariants:
- At least one of category_id / contest_id is set
- With a category, contest_id and event_id come from its parent chain
- At most one assignment per (tenant, judge, category)
"""
import enum
from datetime import datetime

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship

from event_scoring.orm.base import Base


class AssignmentStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class Assignment(Base):
    __tablename__ = "assignments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False, default="default")
    judge_id = Column(Integer, ForeignKey("judges.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="CASCADE"), nullable=True, index=True)
    contest_id = Column(Integer, ForeignKey("contests.id", ondelete="CASCADE"), nullable=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=True)
    status = Column(String(20), default=AssignmentStatus.PENDING.value, nullable=False)
    priority = Column(Integer, default=0, nullable=False)
    notes = Column(Text, nullable=True)
    assigned_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    judge = relationship("Judge")
    category = relationship("Category")
    contest = relationship("Contest")
    event = relationship("Event")
    assigned_by_user = relationship("User")

    __table_args__ = (
        UniqueConstraint('tenant_id', 'judge_id', 'category_id', name='uq_assignment_tenant_judge_category'),
        Index('idx_assignment_contest_event', 'contest_id', 'event_id'),
    )

    def __repr__(self):
        return f"<Assignment(id={self.id}, judge={self.judge_id}, category={self.category_id}, status={self.status})>"

    def to_dict(self, include_relations: bool = True):
        """
        Serialize the record.

        Relations must already be loaded (selectinload) when
        include_relations is set; async sessions cannot lazy-load.
        """
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "judge_id": self.judge_id,
            "category_id": self.category_id,
            "contest_id": self.contest_id,
            "event_id": self.event_id,
            "status": self.status,
            "priority": self.priority,
            "notes": self.notes,
            "assigned_by": self.assigned_by,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
        }
        if include_relations:
            data["judge"] = self.judge.to_summary() if self.judge else None
            data["category"] = self.category.to_summary() if self.category else None
            data["contest"] = self.contest.to_summary() if self.contest else None
            data["event"] = self.event.to_summary() if self.event else None
            data["assigned_by_user"] = self.assigned_by_user.to_summary() if self.assigned_by_user else None
        return data
