"""
Taskiq task modules.

- triggers: one-off trigger dispatcher ticks.
- workflows: manual workflow runs.
"""

__all__ = ["triggers", "workflows"]
