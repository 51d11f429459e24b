"""
Database queries, grouped by table family.

Module organization:
- users.py: User progress rows, atomic XP updates, advisory locks
- actions.py: Action log and validation failure audit
- activity.py: Daily activity, likes, watch bonuses, completions,
  engagement bonuses and achievement unlocks
"""

from src.db.queries import actions, activity, users

__all__ = ["actions", "activity", "users"]
