"""
explorer.py: desktop explorer for the dye techniques.

Pick a fabric photo, then flip through the techniques or show all 15 as a
contact sheet. Renders run on a worker thread; moving a control restarts a
short debounce timer so dragging a slider does not queue dozens of renders.
"""
import sys
import time
import traceback
from pathlib import Path
from typing import Any, Dict, List, Optional

from PyQt5.QtCore import Qt, QThread, QTimer, pyqtSignal
from PyQt5.QtGui import QColor, QImage, QPalette, QPixmap
from PyQt5.QtWidgets import (
    QAction, QApplication, QCheckBox, QColorDialog, QFileDialog, QGroupBox,
    QHBoxLayout, QLabel, QListWidget, QListWidgetItem, QMainWindow, QMessageBox,
    QPushButton, QSizePolicy, QSlider, QStyleFactory, QToolBar, QVBoxLayout, QWidget,
)

from PIL import Image

import engine
from autocrop import autocrop
from dyeing import DyeError, to_image
from dyelab import load_source, save_image
from engine import AutocropGenerator, DyeGenerator, RenderParams, contact_sheet, render_gallery, render_technique
from techniques import TECHNIQUES, Technique, technique_seed

ACCENT = "#8b1cf5"  # the default dye


def set_dark_theme(app: QApplication) -> None:
    app.setStyle(QStyleFactory.create("Fusion"))
    palette = QPalette()
    for role, color in {
        QPalette.Window: QColor(45, 45, 48),
        QPalette.Base: QColor(30, 30, 32),
        QPalette.AlternateBase: QColor(45, 45, 48),
        QPalette.Button: QColor(45, 45, 48),
        QPalette.Highlight: QColor(ACCENT),
    }.items():
        palette.setColor(role, color)
    for role in (QPalette.WindowText, QPalette.Text, QPalette.ButtonText, QPalette.HighlightedText):
        palette.setColor(role, Qt.white)
    app.setPalette(palette)
    app.setStyleSheet(
        f"QGroupBox {{ border: 1px solid #555; border-radius: 4px; margin-top: 1.2em; font-weight: bold; }}"
        f"QGroupBox::title {{ subcontrol-origin: margin; left: 6px; }}"
        f"QListWidget::item:selected {{ background: {ACCENT}; }}"
    )


class RenderWorker(QThread):
    """One render; `token` lets the window ignore results it no longer wants."""
    done = pyqtSignal(object, float, int)
    error = pyqtSignal(str)

    def __init__(self, source: Image.Image, params: RenderParams, gallery: bool, token: int):
        super().__init__()
        self.source, self.params, self.gallery, self.token = source, params, gallery, token

    def run(self):
        t0 = time.perf_counter()
        try:
            if self.gallery:
                img = contact_sheet(render_gallery(self.source, self.params), columns=3)
            else:
                p = self.params
                img = to_image(render_technique(self.source, p.with_technique(
                    p.technique, seed=technique_seed(p.technique, p.seed))))
        except Exception as e:
            self.error.emit("".join(traceback.format_exception(type(e), e, e.__traceback__)))
            return
        self.done.emit(img, time.perf_counter() - t0, self.token)


class Preview(QLabel):
    """Shows the latest render scaled to fit, keeping its aspect ratio."""

    def __init__(self):
        super().__init__("Open a fabric or photo to preview dyes")
        self.setAlignment(Qt.AlignCenter)
        self.setMinimumSize(320, 200)
        # ignore the pixmap size hint so rescaling on resize cannot grow the label
        self.setSizePolicy(QSizePolicy.Ignored, QSizePolicy.Ignored)
        self.setStyleSheet("background: #1e1e1e; color: #999;")
        self._pixmap: Optional[QPixmap] = None

    def show_image(self, img: Image.Image) -> None:
        rgba = img.convert("RGBA")
        qim = QImage(rgba.tobytes("raw", "RGBA"), rgba.width, rgba.height, QImage.Format_RGBA8888)
        self._pixmap = QPixmap.fromImage(qim.copy())  # QImage does not own the bytes
        self._rescale()

    def resizeEvent(self, event):
        super().resizeEvent(event)
        self._rescale()

    def _rescale(self):
        if self._pixmap is not None:
            self.setPixmap(self._pixmap.scaled(self.size(), Qt.KeepAspectRatio, Qt.SmoothTransformation))


class SliderParam(QWidget):
    """Labelled slider for one numeric generator parameter (int or float)."""
    changed = pyqtSignal()
    STEPS = 200

    def __init__(self, spec: Dict[str, Any]):
        super().__init__()
        self.kind, self.lo, self.hi = spec["type"], spec["min"], spec["max"]
        self.name = spec["name"]
        self.slider = QSlider(Qt.Horizontal)
        if self.kind is int:
            self.slider.setRange(self.lo, self.hi)
            self.slider.setValue(int(spec["default"]))
        else:
            self.slider.setRange(0, self.STEPS)
            self.slider.setValue(round((spec["default"] - self.lo) / (self.hi - self.lo) * self.STEPS))
        self.readout = QLabel()
        self.readout.setFixedWidth(48)
        self.slider.valueChanged.connect(self._moved)
        self.setToolTip(spec.get("help", ""))

        row = QHBoxLayout(self)
        row.setContentsMargins(0, 2, 0, 2)
        row.addWidget(QLabel(self.name))
        row.addWidget(self.slider, 1)
        row.addWidget(self.readout)
        self._moved()

    def value(self):
        if self.kind is int:
            return self.slider.value()
        return self.lo + (self.hi - self.lo) * self.slider.value() / self.STEPS

    def _moved(self, *_):
        v = self.value()
        self.readout.setText(str(v) if self.kind is int else f"{v:.2f}")
        self.changed.emit()


class ColorButton(QPushButton):
    changed = pyqtSignal()

    def __init__(self, hex_color: str):
        super().__init__()
        self.clicked.connect(self._pick)
        self._set(hex_color)

    def _set(self, hex_color: str) -> None:
        self._hex = hex_color
        self.setText(hex_color)
        self.setStyleSheet(f"background-color: {hex_color}; color: white;")

    def _pick(self):
        c = QColorDialog.getColor(QColor(self._hex), self, "Dye colour")
        if c.isValid():
            self._set(c.name())
            self.changed.emit()

    def value(self) -> str:
        return self._hex


def _numeric(params: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [p for p in params if "min" in p and "max" in p]


class DyeExplorer(QMainWindow):
    def __init__(self):
        super().__init__()
        self.setWindowTitle("Dyeing Techniques Explorer")
        self.resize(1400, 820)

        self.loaded: Optional[Image.Image] = None
        self.source: Optional[Image.Image] = None
        self.rendered: Optional[Image.Image] = None
        self.worker: Optional[RenderWorker] = None
        self._token = 0

        self.debounce = QTimer(self, singleShot=True, interval=200)
        self.debounce.timeout.connect(self.render)
        self._build()

    def _build(self):
        bar = QToolBar("Main")
        self.addToolBar(bar)
        for text, slot in (("Open…", self.open_image), ("Save…", self.save_render)):
            act = QAction(text, self)
            act.triggered.connect(slot)
            bar.addAction(act)
        bar.addSeparator()
        self.chk_autocrop = QCheckBox("Auto-crop borders", checked=True)
        self.chk_autocrop.toggled.connect(self.prepare_source)
        bar.addWidget(self.chk_autocrop)
        self.chk_gallery = QCheckBox("All techniques")
        self.chk_gallery.toggled.connect(self.schedule)
        bar.addWidget(self.chk_gallery)

        self.techniques = QListWidget()
        for key, label in TECHNIQUES:
            item = QListWidgetItem(label)
            item.setData(Qt.UserRole, key)
            self.techniques.addItem(item)
        self.techniques.setCurrentRow(0)
        self.techniques.currentRowChanged.connect(self.schedule)
        left = QGroupBox("Technique")
        left.setFixedWidth(280)
        QVBoxLayout(left).addWidget(self.techniques)

        self.preview = Preview()

        right = QGroupBox("Dye")
        right.setFixedWidth(330)
        controls = QVBoxLayout(right)
        self.color = ColorButton(engine.DEFAULT_DYE)
        self.color.changed.connect(self.schedule)
        controls.addWidget(self.color)
        self.dye_params = {p["name"]: SliderParam(p) for p in _numeric(DyeGenerator.get_params())}
        for w in self.dye_params.values():
            w.changed.connect(self.schedule)
            controls.addWidget(w)
        self.tolerance = SliderParam(_numeric(AutocropGenerator.get_params())[0])
        self.tolerance.changed.connect(self.prepare_source)
        controls.addWidget(self.tolerance)
        hint = QLabel("Borders left over: raise tolerance. Fabric cut off: lower it.")
        hint.setWordWrap(True)
        hint.setStyleSheet("color: gray; font-style: italic;")
        controls.addWidget(hint)
        controls.addStretch()

        central = QWidget()
        row = QHBoxLayout(central)
        row.addWidget(left)
        row.addWidget(self.preview, 1)
        row.addWidget(right)
        self.setCentralWidget(central)
        self.status = QLabel("Ready")
        self.statusBar().addWidget(self.status)

    def open_image(self):
        path, _ = QFileDialog.getOpenFileName(self, "Open image", "", "Images (*.png *.jpg *.jpeg *.webp *.bmp *.heic)")
        if not path:
            return
        try:
            self.loaded = load_source(path)
        except (OSError, ValueError) as e:
            QMessageBox.critical(self, "Open failed", str(e))
            return
        self.status.setText(f"Loaded {Path(path).name}")
        self.prepare_source()

    def save_render(self):
        if self.rendered is None:
            return
        path, _ = QFileDialog.getSaveFileName(self, "Save render", "dyed.png", "Images (*.png *.jpg *.webp)")
        if path:
            save_image(self.rendered, Path(path))
            self.status.setText(f"Saved {Path(path).name}")

    def prepare_source(self, *_):
        if self.loaded is None:
            return
        if self.chk_autocrop.isChecked():
            self.source = to_image(autocrop(self.loaded, self.tolerance.value()))
        else:
            self.source = self.loaded
        self.schedule()

    def schedule(self, *_):
        self.debounce.start()

    def params(self) -> Optional[RenderParams]:
        item = self.techniques.currentItem()
        values = {name: w.value() for name, w in self.dye_params.items()}
        w, h = engine.PREVIEW_SIZE
        try:
            return RenderParams(
                technique=item.data(Qt.UserRole) if item else Technique.OMBRE,
                dye=self.color.value(), width=w, height=h, **values,
            )
        except DyeError as e:
            self.status.setText(str(e))
            return None

    def render(self):
        if self.source is None:
            return
        if self.worker is not None and self.worker.isRunning():
            self.debounce.start()
            return
        params = self.params()
        if params is None:
            return
        self._token += 1
        self.status.setText("Rendering…")
        self.worker = RenderWorker(self.source, params, self.chk_gallery.isChecked(), self._token)
        self.worker.done.connect(self.on_rendered)
        self.worker.error.connect(self.on_error)
        self.worker.start()

    def on_rendered(self, img, seconds, token):
        if token != self._token:
            return
        self.rendered = img
        self.preview.show_image(img)
        self.status.setText(f"{img.width}x{img.height} in {seconds * 1000:.0f} ms")

    def on_error(self, message):
        self.status.setText("Render failed")
        QMessageBox.warning(self, "Render failed", message)


def main():
    app = QApplication(sys.argv)
    set_dark_theme(app)
    win = DyeExplorer()
    win.show()
    sys.exit(app.exec_())


if __name__ == "__main__":
    main()
