"""
Clinic Board GUI Widgets

Custom widgets for displaying board data.
"""

from .calendar_tile import CalendarTile

__all__ = ['CalendarTile']
