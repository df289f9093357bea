"""
Taskiq worker package for the automation core.

Hosts the trigger dispatcher loop and background tasks for dispatcher ticks
and manual workflow runs.
"""

__all__ = ["broker"]
