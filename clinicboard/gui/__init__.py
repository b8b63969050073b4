"""
Clinic Board GUI Module

PySide6-based TV board for the scheduling dashboard.
"""

from .board_window import BoardWindow

__all__ = ['BoardWindow']
