"""Directory module — Team, Employee, Task records the planner schedules against."""

from planner.directory.models import Employee, Task, Team

__all__ = ["Employee", "Task", "Team"]
