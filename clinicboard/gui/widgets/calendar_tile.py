"""
Calendar tile for the TV board.

One tile per calendar: name and category on top, then what is happening
now and what comes next. Event text goes through display_event(), so
calendars with showDetails off only show the busy label.
"""

from typing import Optional

from PySide6.QtWidgets import QFrame, QLabel, QVBoxLayout, QWidget
from PySide6.QtCore import Qt
from PySide6.QtGui import QFont

from clinicboard.config import LabelsConfig
from clinicboard.models import CalendarConfig, CalendarSchedule
from clinicboard.presentation import display_event, type_label


MAX_UPCOMING = 4


class CalendarTile(QFrame):
    """Board tile showing one calendar's current and upcoming events."""

    def __init__(
        self,
        calendar: CalendarConfig,
        labels: LabelsConfig,
        font: Optional[QFont] = None,
        parent: QWidget = None
    ):
        super().__init__(parent)
        self.calendar = calendar
        self._labels = labels
        self.setFrameShape(QFrame.StyledPanel)
        self.setObjectName("calendarTile")
        if font is not None:
            self.setFont(font)
        self._setup_ui()

    def _setup_ui(self):
        layout = QVBoxLayout(self)
        layout.setContentsMargins(12, 12, 12, 12)
        layout.setSpacing(6)

        self._name_label = QLabel(self.calendar.label)
        name_font = QFont(self.font())
        name_font.setBold(True)
        name_font.setPointSize(name_font.pointSize() + 4)
        self._name_label.setFont(name_font)
        layout.addWidget(self._name_label)

        self._type_label = QLabel(type_label(self.calendar.type, self._labels).upper())
        self._type_label.setStyleSheet("color: rgba(0, 0, 0, 0.6);")
        layout.addWidget(self._type_label)

        self._error_label = QLabel(self._labels.calendar_error)
        self._error_label.setStyleSheet("color: #d32f2f; font-weight: bold;")
        self._error_label.hide()
        layout.addWidget(self._error_label)

        layout.addWidget(self._header(self._labels.current_header))
        self._current_label = QLabel()
        self._current_label.setWordWrap(True)
        self._current_label.setTextFormat(Qt.PlainText)
        layout.addWidget(self._current_label)

        layout.addWidget(self._header(self._labels.upcoming_header))
        self._upcoming_label = QLabel()
        self._upcoming_label.setWordWrap(True)
        self._upcoming_label.setTextFormat(Qt.PlainText)
        layout.addWidget(self._upcoming_label)

        layout.addStretch()

    def _header(self, text: str) -> QLabel:
        label = QLabel(text.upper())
        label.setStyleSheet("color: #1976d2; font-weight: bold;")
        return label

    def set_schedule(self, schedule: CalendarSchedule, error: Optional[str] = None):
        """Show a classification result; `error` marks the calendar as unavailable."""
        self._error_label.setVisible(error is not None)
        if error is not None:
            self._error_label.setToolTip(error)

        self._current_label.setText(self._format_events(schedule.current))
        self._upcoming_label.setText(self._format_events(schedule.upcoming[:MAX_UPCOMING]))

    def _format_events(self, events) -> str:
        if not events:
            return self._labels.no_events
        lines = []
        for event in events:
            shown = display_event(event, self.calendar, self._labels)
            line = f"{shown.time_range}  {shown.title}"
            if shown.location:
                line += f" ({shown.location})"
            lines.append(line)
        return "\n".join(lines)
