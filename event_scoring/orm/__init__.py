from .base import Base

# Event hierarchy
from .event import Event, Contest, Category

# People
from .user import User, UserRole
from .judge import Judge, CategoryJudge
from .contestant import Contestant, CategoryContestant

# Assignments
from .assignment import Assignment, AssignmentStatus
