"""
Board window for Clinic Board.

Full-screen TV view: a large clock, the board date, the connection
status and one tile per active calendar showing what is happening now
and what comes next. All data arrives through RefreshScheduler signals.
"""

from datetime import date, datetime, timedelta
from typing import Mapping, Optional
import logging

from PySide6.QtWidgets import (
    QMainWindow, QWidget, QVBoxLayout, QHBoxLayout, QGridLayout, QLabel,
    QPushButton, QComboBox, QLineEdit, QScrollArea, QStatusBar, QToolBar,
    QSizePolicy, QApplication,
)
from PySide6.QtCore import Qt
from PySide6.QtGui import QCloseEvent, QFont, QKeySequence, QShortcut

from clinicboard.analysis import Insight, InsightClient, find_conflicts
from clinicboard.config import Config
from clinicboard.models import BoardSnapshot, BoardStatus, CalendarSchedule, CalendarType
from clinicboard.network_worker import NetworkWorker
from clinicboard.presentation import filter_calendars, ordered_calendars, type_label
from clinicboard.scheduler import RefreshScheduler
from clinicboard.timezone_utils import get_timezone

from .widgets import CalendarTile


logger = logging.getLogger(__name__)

TILE_COLUMNS = 4
INSIGHT_OPERATION = "insight"


class BoardWindow(QMainWindow):
    """
    TV board window.

    Contains:
    - Toolbar with date navigation, type filter and search
    - Clock and status header
    - Grid of calendar tiles
    """

    def __init__(self, config: Config, scheduler: RefreshScheduler, parent=None):
        super().__init__(parent)
        self.config = config
        self.scheduler = scheduler
        self._tz = get_timezone(config.timezone)

        self._interface_font = QFont(config.layout.interface_font, config.layout.interface_font_size)
        QApplication.instance().setFont(self._interface_font)

        self._tiles: dict[str, CalendarTile] = {}
        self._tile_order: list[str] = []
        self._snapshot: Optional[BoardSnapshot] = None
        self._classification: Mapping[str, CalendarSchedule] = {}

        # Insight requests run off the GUI thread like the refresh cycles
        self._insight_client: Optional[InsightClient] = None
        self._insight_worker: Optional[NetworkWorker] = None
        if config.analysis.url:
            self._insight_client = InsightClient(config.analysis.url, config.analysis.timeout)
            self._insight_worker = NetworkWorker(max_workers=1, parent=self)
            self._insight_worker.operation_finished.connect(self._on_insight_finished)
            self._insight_worker.operation_error.connect(self._on_insight_error)

        self._setup_window()
        self._setup_ui()
        self._setup_toolbar()
        self._setup_shortcuts()
        self._setup_statusbar()

        scheduler.board_changed.connect(self._on_board_changed)
        scheduler.status_changed.connect(self._on_status_changed)
        scheduler.classification_changed.connect(self._on_classification_changed)

        self._update_date_label()
        self._on_status_changed(scheduler.status)

    def _setup_window(self):
        """Configure main window properties."""
        self.setWindowTitle(self.config.labels.window_title)
        self.setMinimumSize(800, 600)
        self.resize(1600, 900)

    def _setup_ui(self):
        """Set up the header and the tile grid."""
        central = QWidget()
        layout = QVBoxLayout(central)
        layout.setContentsMargins(16, 8, 16, 8)

        header = QHBoxLayout()
        self._date_label = QLabel()
        date_font = QFont(self._interface_font)
        date_font.setBold(True)
        date_font.setPointSize(self.config.layout.interface_font_size + 8)
        self._date_label.setFont(date_font)
        header.addWidget(self._date_label)

        header.addStretch()

        self._connection_label = QLabel()
        header.addWidget(self._connection_label)

        self._clock_label = QLabel("--:--:--")
        clock_font = QFont(self.config.layout.interface_font, self.config.layout.clock_font_size)
        clock_font.setBold(True)
        self._clock_label.setFont(clock_font)
        self._clock_label.setAlignment(Qt.AlignRight | Qt.AlignVCenter)
        header.addWidget(self._clock_label)
        layout.addLayout(header)

        self._insight_label = QLabel()
        self._insight_label.setWordWrap(True)
        self._insight_label.hide()
        layout.addWidget(self._insight_label)

        scroll = QScrollArea()
        scroll.setWidgetResizable(True)
        scroll.setHorizontalScrollBarPolicy(Qt.ScrollBarAlwaysOff)
        grid_host = QWidget()
        self._grid = QGridLayout(grid_host)
        self._grid.setSpacing(12)
        self._grid.setAlignment(Qt.AlignTop)
        scroll.setWidget(grid_host)
        layout.addWidget(scroll)

        self.setCentralWidget(central)

    def _setup_toolbar(self):
        """Set up the navigation and filter toolbar."""
        labels = self.config.labels
        toolbar = QToolBar("Navigation")
        toolbar.setMovable(False)
        self.addToolBar(toolbar)

        self._prev_btn = QPushButton("<")
        self._prev_btn.setFont(self._interface_font)
        self._prev_btn.setToolTip("Previous day")
        self._prev_btn.clicked.connect(self.go_previous)
        toolbar.addWidget(self._prev_btn)

        self._today_btn = QPushButton("Today")
        self._today_btn.setFont(self._interface_font)
        self._today_btn.clicked.connect(self.go_today)
        toolbar.addWidget(self._today_btn)

        self._next_btn = QPushButton(">")
        self._next_btn.setFont(self._interface_font)
        self._next_btn.setToolTip("Next day")
        self._next_btn.clicked.connect(self.go_next)
        toolbar.addWidget(self._next_btn)

        toolbar.addSeparator()

        self._type_combo = QComboBox()
        self._type_combo.setFont(self._interface_font)
        self._type_combo.addItem("All", "all")
        for cal_type in CalendarType:
            self._type_combo.addItem(type_label(cal_type.value, labels), cal_type.value)
        self._type_combo.currentIndexChanged.connect(lambda _index: self._rebuild_tiles())
        toolbar.addWidget(self._type_combo)

        self._search_edit = QLineEdit()
        self._search_edit.setFont(self._interface_font)
        self._search_edit.setPlaceholderText("Search")
        self._search_edit.setClearButtonEnabled(True)
        self._search_edit.textChanged.connect(lambda _text: self._rebuild_tiles())
        toolbar.addWidget(self._search_edit)

        spacer = QWidget()
        spacer.setSizePolicy(QSizePolicy.Expanding, QSizePolicy.Preferred)
        toolbar.addWidget(spacer)

        if self._insight_client is not None:
            self._analyze_btn = QPushButton("Analyze")
            self._analyze_btn.setFont(self._interface_font)
            self._analyze_btn.setToolTip("Ask for a summary of the day's schedule")
            self._analyze_btn.clicked.connect(self.request_insight)
            toolbar.addWidget(self._analyze_btn)

        self._reload_btn = QPushButton("Reload")
        self._reload_btn.setFont(self._interface_font)
        self._reload_btn.setToolTip("Reload events from all calendars")
        self._reload_btn.clicked.connect(lambda: self.scheduler.request_refresh("manual"))
        toolbar.addWidget(self._reload_btn)

        self._quit_btn = QPushButton("Quit")
        self._quit_btn.setFont(self._interface_font)
        self._quit_btn.clicked.connect(self.close)
        toolbar.addWidget(self._quit_btn)

        self._toolbar = toolbar
        if self.config.layout.kiosk:
            toolbar.hide()

    def _setup_shortcuts(self):
        """Keyboard control for a board without a mouse."""
        QShortcut(QKeySequence(Qt.Key_Left), self).activated.connect(self.go_previous)
        QShortcut(QKeySequence(Qt.Key_Right), self).activated.connect(self.go_next)
        QShortcut(QKeySequence(Qt.Key_Home), self).activated.connect(self.go_today)
        QShortcut(QKeySequence(Qt.Key_F5), self).activated.connect(
            lambda: self.scheduler.request_refresh("manual")
        )
        QShortcut(QKeySequence(Qt.Key_F11), self).activated.connect(self.toggle_kiosk)
        QShortcut(QKeySequence(Qt.Key_Escape), self).activated.connect(self._toggle_toolbar)

    def _setup_statusbar(self):
        """Set up the status bar."""
        self._statusbar = QStatusBar()
        self._statusbar.setFont(self._interface_font)
        self.setStatusBar(self._statusbar)
        self._statusbar.showMessage("Loading...")

    # ==================== Navigation ====================

    def go_previous(self):
        self.scheduler.set_date(self.scheduler.current_date - timedelta(days=1))
        self._update_date_label()

    def go_next(self):
        self.scheduler.set_date(self.scheduler.current_date + timedelta(days=1))
        self._update_date_label()

    def go_today(self):
        self.scheduler.set_date(None)
        self._update_date_label()

    def toggle_kiosk(self):
        if self.isFullScreen():
            self.showNormal()
        else:
            self.showFullScreen()

    def _toggle_toolbar(self):
        self._toolbar.setVisible(not self._toolbar.isVisible())

    def _update_date_label(self, day: Optional[date] = None):
        day = day or self.scheduler.current_date
        self._date_label.setText(day.strftime("%A, %d %B %Y"))

    # ==================== Scheduler signals ====================

    def _on_board_changed(self, snapshot: BoardSnapshot):
        calendars_changed = (
            self._snapshot is None or self._snapshot.calendars != snapshot.calendars
        )
        self._snapshot = snapshot
        self._update_date_label(snapshot.date)
        self._insight_label.hide()
        if calendars_changed:
            self._rebuild_tiles()

        conflicts = find_conflicts(snapshot.events, self.config.labels.untitled)
        for conflict in conflicts:
            logger.info("Conflict on %s: %s", snapshot.date.isoformat(), conflict.describe())

        local_time = snapshot.fetched_at.astimezone(self._tz)
        message = f"{len(snapshot.events)} events, updated {local_time:%H:%M:%S}"
        if conflicts:
            message += f" - {len(conflicts)} conflict(s)"
        self._statusbar.showMessage(message)

    def _on_status_changed(self, status: BoardStatus):
        labels = self.config.labels
        if status.ok:
            text = labels.connection_ok
            color = "#388e3c"
        else:
            text = labels.connection_error
            if status.stale:
                text = f"{text} {labels.stale_suffix}"
            color = "#d32f2f"
        if status.message:
            text = f"{text} - {status.message}"
        self._connection_label.setText(text)
        self._connection_label.setStyleSheet(f"color: {color}; font-weight: bold;")

    def _on_classification_changed(self, classification: Mapping[str, CalendarSchedule]):
        self._classification = classification
        now = datetime.now(self._tz)
        self._clock_label.setText(now.strftime("%H:%M:%S"))
        self._update_tiles()

    # ==================== Tiles ====================

    def _rebuild_tiles(self):
        """Recreate the tile grid for the current snapshot and filters."""
        while self._grid.count():
            item = self._grid.takeAt(0)
            if item.widget():
                item.widget().deleteLater()
        self._tiles.clear()
        self._tile_order.clear()

        if self._snapshot is None:
            return

        calendars = filter_calendars(
            ordered_calendars(self._snapshot.calendars),
            cal_type=self._type_combo.currentData(),
            search=self._search_edit.text(),
        )
        for index, calendar in enumerate(calendars):
            tile = CalendarTile(calendar, self.config.labels, font=self._interface_font)
            self._grid.addWidget(tile, index // TILE_COLUMNS, index % TILE_COLUMNS)
            self._tiles[calendar.id] = tile
            self._tile_order.append(calendar.id)

        self._update_tiles()

    def _update_tiles(self):
        errors = self._snapshot.errors if self._snapshot is not None else {}
        for calendar_id in self._tile_order:
            schedule = self._classification.get(calendar_id, CalendarSchedule())
            self._tiles[calendar_id].set_schedule(schedule, errors.get(calendar_id))

    # ==================== Insight ====================

    def request_insight(self):
        """Ask the analysis endpoint about the displayed day."""
        if self._insight_client is None or self._snapshot is None:
            return
        if self._insight_worker.is_pending(INSIGHT_OPERATION):
            return
        self._statusbar.showMessage("Analyzing schedule...")
        self._insight_worker.submit(
            INSIGHT_OPERATION,
            self._insight_client.analyze,
            self._snapshot.events,
            self._snapshot.date,
        )

    def _on_insight_finished(self, operation_id: str, insight: Insight):
        color = "#d32f2f" if insight.has_conflicts else "#388e3c"
        self._insight_label.setStyleSheet(f"color: {color};")
        self._insight_label.setText(insight.text)
        self._insight_label.show()
        self._statusbar.showMessage("Analysis complete", 5000)

    def _on_insight_error(self, operation_id: str, error: object):
        logger.warning("Insight request failed: %s", error)
        self._statusbar.showMessage(f"Analysis failed: {error}", 10000)

    def closeEvent(self, event: QCloseEvent):
        """Handle window close."""
        self.scheduler.stop()
        if self._insight_worker is not None:
            self._insight_worker.shutdown(wait=False)
        super().closeEvent(event)
