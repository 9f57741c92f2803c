"""Design Planner — scheduling and capacity engine."""
