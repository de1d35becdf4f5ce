"""Foreground target resolution through the platform accessibility layer.

This module answers "what is the user looking at right now": the frontmost
process, its focused window title and geometry, and any selected text. The
platform specifics live behind the ``AccessibilityQuery`` protocol so the
resolver logic is shared between backends.

Backends:
    MacAccessibility: PyObjC bindings for NSWorkspace and the AXUIElement API
    X11Accessibility: xdotool / xprop / xclip subprocess calls
    Win32Accessibility: pywin32 foreground window queries, psutil process names

Every query fails soft. A lookup that raises or returns nothing becomes
``None``, and a missing frontmost process becomes ``UNRECOGNIZED_TARGET``.

Example:
    >>> resolver = ForegroundResolver(default_accessibility())
    >>> target = resolver.resolve_target()
    >>> resolver.focused_window_title(target.accessibility_root)
    'pipeline.py - ambient-context'
"""

import logging
import os
import subprocess
import sys
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from .geometry import Rect

logger = logging.getLogger(__name__)

# Attribute names follow the macOS AX vocabulary on every backend
FOCUSED_WINDOW = "AXFocusedWindow"
FOCUSED_UI_ELEMENT = "AXFocusedUIElement"
TITLE = "AXTitle"
SELECTED_TEXT = "AXSelectedText"
POSITION = "AXPosition"
SIZE = "AXSize"


def clean_text(value: Optional[str]) -> Optional[str]:
    """Trim whitespace and collapse newlines to spaces; empty becomes None."""
    if value is None:
        return None
    cleaned = value.strip().replace("\r\n", " ").replace("\n", " ").replace("\r", " ")
    return cleaned or None


@dataclass(frozen=True)
class ApplicationInfo:
    """Frontmost application as reported by the OS."""
    pid: int
    name: Optional[str]
    identifier: Optional[str]


@dataclass(frozen=True)
class ForegroundTarget:
    """Resolved foreground process plus its accessibility root element.

    Attributes:
        process_id: PID of the frontmost application, None when unrecognized
        app_name: Localized application name
        app_identifier: Stable bundle / WM_CLASS identifier
        accessibility_root: Backend-specific application element
    """
    process_id: Optional[int]
    app_name: Optional[str]
    app_identifier: Optional[str]
    accessibility_root: Any = None

    @property
    def is_recognized(self) -> bool:
        return self.process_id is not None


UNRECOGNIZED_TARGET = ForegroundTarget(None, None, None, None)


class AccessibilityQuery(Protocol):
    """Read-only accessibility capability consumed by the resolver."""

    def is_trusted(self) -> bool: ...

    def frontmost_application(self) -> Optional[ApplicationInfo]: ...

    def application_element(self, pid: int) -> Any: ...

    def copy_element(self, element: Any, attribute: str) -> Optional[Any]: ...

    def copy_string(self, element: Any, attribute: str) -> Optional[str]: ...

    def copy_frame(self, element: Any) -> Optional[Rect]: ...


class ForegroundResolver:
    """Resolves the foreground application and reads focused-window attributes."""

    def __init__(self, query: AccessibilityQuery):
        self.query = query

    def resolve_target(self) -> ForegroundTarget:
        """Identify the frontmost process.

        Returns:
            ForegroundTarget for the active application, or UNRECOGNIZED_TARGET
            when no foreground process can be determined.
        """
        try:
            if not self.query.is_trusted():
                logger.warning("Accessibility access not granted; window details may be missing")
            app = self.query.frontmost_application()
            if app is None:
                logger.info("No frontmost application")
                return UNRECOGNIZED_TARGET
            root = self.query.application_element(app.pid)
        except Exception as e:
            logger.warning(f"Failed to resolve foreground application: {e}")
            return UNRECOGNIZED_TARGET

        logger.debug(f"Frontmost application: {app.name} ({app.identifier}, pid {app.pid})")
        return ForegroundTarget(
            process_id=app.pid,
            app_name=clean_text(app.name),
            app_identifier=clean_text(app.identifier),
            accessibility_root=root,
        )

    def focused_window_title(self, root: Any) -> Optional[str]:
        try:
            window = self.query.copy_element(root, FOCUSED_WINDOW)
            if window is None:
                return None
            return clean_text(self.query.copy_string(window, TITLE))
        except Exception as e:
            logger.debug(f"Focused window title lookup failed: {e}")
            return None

    def selected_text(self, root: Any) -> Optional[str]:
        """Selected text from the focused element, falling back to the app root."""
        try:
            focused = self.query.copy_element(root, FOCUSED_UI_ELEMENT)
            if focused is not None:
                text = clean_text(self.query.copy_string(focused, SELECTED_TEXT))
                if text:
                    return text
            return clean_text(self.query.copy_string(root, SELECTED_TEXT))
        except Exception as e:
            logger.debug(f"Selected text lookup failed: {e}")
            return None

    def focused_window_bounds(self, root: Any) -> Optional[Rect]:
        try:
            window = self.query.copy_element(root, FOCUSED_WINDOW)
            if window is None:
                return None
            return self.query.copy_frame(window)
        except Exception as e:
            logger.debug(f"Focused window bounds lookup failed: {e}")
            return None


class MacAccessibility:
    """AccessibilityQuery backed by NSWorkspace and the AXUIElement API."""

    def __init__(self):
        import AppKit
        import ApplicationServices
        import CoreFoundation
        self._appkit = AppKit
        self._ax = ApplicationServices
        self._cf = CoreFoundation

    def is_trusted(self) -> bool:
        return bool(self._ax.AXIsProcessTrusted())

    def frontmost_application(self) -> Optional[ApplicationInfo]:
        app = self._appkit.NSWorkspace.sharedWorkspace().frontmostApplication()
        if app is None:
            return None
        return ApplicationInfo(
            pid=int(app.processIdentifier()),
            name=app.localizedName(),
            identifier=app.bundleIdentifier(),
        )

    def application_element(self, pid: int) -> Any:
        return self._ax.AXUIElementCreateApplication(pid)

    def _copy_value(self, element: Any, attribute: str) -> Optional[Any]:
        err, value = self._ax.AXUIElementCopyAttributeValue(element, attribute, None)
        if err != self._ax.kAXErrorSuccess or value is None:
            return None
        return value

    def copy_element(self, element: Any, attribute: str) -> Optional[Any]:
        value = self._copy_value(element, attribute)
        if value is None:
            return None
        if self._cf.CFGetTypeID(value) != self._ax.AXUIElementGetTypeID():
            return None
        return value

    def copy_string(self, element: Any, attribute: str) -> Optional[str]:
        value = self._copy_value(element, attribute)
        if isinstance(value, str):
            return str(value)
        return None

    def copy_frame(self, element: Any) -> Optional[Rect]:
        position = self._copy_value(element, POSITION)
        size = self._copy_value(element, SIZE)
        if position is None or size is None:
            return None
        ok_point, point = self._ax.AXValueGetValue(position, self._ax.kAXValueCGPointType, None)
        ok_size, extent = self._ax.AXValueGetValue(size, self._ax.kAXValueCGSizeType, None)
        if not ok_point or not ok_size:
            return None
        return Rect(point.x, point.y, extent.width, extent.height)


@dataclass(frozen=True)
class X11Element:
    """Stand-in element for X11: an application (pid) or one of its windows."""
    pid: int
    window_id: Optional[str] = None


class X11Accessibility:
    """AccessibilityQuery built on xdotool, xprop and xclip.

    X11 has no focused-control tree, so FOCUSED_UI_ELEMENT never resolves and
    selected text always comes from the application-level lookup, which reads
    the PRIMARY selection.
    """

    def __init__(self, timeout: float = 1.0):
        self.timeout = timeout

    def _run(self, args: list[str]) -> Optional[str]:
        try:
            return subprocess.check_output(
                args,
                stderr=subprocess.DEVNULL,
                timeout=self.timeout
            ).decode(errors='replace').strip()
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError) as e:
            logger.debug(f"{args[0]} failed: {e}")
            return None

    def is_trusted(self) -> bool:
        return bool(os.environ.get("DISPLAY"))

    def _active_window(self) -> Optional[str]:
        return self._run(['xdotool', 'getactivewindow']) or None

    def _window_pid(self, window_id: str) -> Optional[int]:
        output = self._run(['xdotool', 'getwindowpid', window_id])
        try:
            return int(output) if output else None
        except ValueError:
            return None

    def _wm_class(self, window_id: str) -> tuple[Optional[str], Optional[str]]:
        """Parse WM_CLASS = "instance", "class"."""
        output = self._run(['xprop', '-id', window_id, 'WM_CLASS'])
        if not output or 'WM_CLASS' not in output or '=' not in output:
            return None, None
        parts = output.split('=', 1)[1].strip()
        classes = [c.strip().strip('"') for c in parts.split(',')]
        if len(classes) >= 2:
            return classes[0], classes[1]
        return classes[0], classes[0]

    def frontmost_application(self) -> Optional[ApplicationInfo]:
        window_id = self._active_window()
        if not window_id:
            return None
        pid = self._window_pid(window_id)
        if pid is None:
            return None

        instance, app_class = self._wm_class(window_id)
        name = app_class
        if not name:
            try:
                with open(f"/proc/{pid}/comm") as f:
                    name = f.read().strip() or None
            except OSError:
                name = None
        return ApplicationInfo(pid=pid, name=name, identifier=instance)

    def application_element(self, pid: int) -> X11Element:
        return X11Element(pid=pid)

    def copy_element(self, element: X11Element, attribute: str) -> Optional[X11Element]:
        if attribute != FOCUSED_WINDOW or element.window_id is not None:
            return None
        window_id = self._active_window()
        if not window_id or self._window_pid(window_id) != element.pid:
            return None
        return X11Element(pid=element.pid, window_id=window_id)

    def copy_string(self, element: X11Element, attribute: str) -> Optional[str]:
        if attribute == TITLE and element.window_id:
            return self._run(['xdotool', 'getwindowname', element.window_id])
        if attribute == SELECTED_TEXT and element.window_id is None:
            return self._run(['xclip', '-o', '-selection', 'primary'])
        return None

    def copy_frame(self, element: X11Element) -> Optional[Rect]:
        if not element.window_id:
            return None
        output = self._run(['xdotool', 'getwindowgeometry', '--shell', element.window_id])
        if not output:
            return None

        values = {}
        for line in output.splitlines():
            key, _, value = line.partition('=')
            values[key.strip()] = value.strip()
        try:
            return Rect(
                float(values['X']),
                float(values['Y']),
                float(values['WIDTH']),
                float(values['HEIGHT']),
            )
        except (KeyError, ValueError):
            return None


@dataclass(frozen=True)
class Win32Element:
    """Stand-in element for Windows: an application (pid) or its foreground window."""
    pid: int
    hwnd: Optional[int] = None


class Win32Accessibility:
    """AccessibilityQuery built on pywin32 and psutil.

    Win32 reports the foreground window's title and rectangle, but selected
    text needs UI Automation, so SELECTED_TEXT never resolves here.
    """

    def __init__(self):
        import psutil
        import win32gui
        import win32process
        self._psutil = psutil
        self._gui = win32gui
        self._process = win32process

    def is_trusted(self) -> bool:
        return True

    def _foreground_window(self) -> tuple[Optional[int], Optional[int]]:
        hwnd = self._gui.GetForegroundWindow()
        if not hwnd:
            return None, None
        _, pid = self._process.GetWindowThreadProcessId(hwnd)
        return int(hwnd), (int(pid) if pid else None)

    def frontmost_application(self) -> Optional[ApplicationInfo]:
        hwnd, pid = self._foreground_window()
        if hwnd is None or pid is None:
            return None

        try:
            executable = self._psutil.Process(pid).name()
        except self._psutil.Error as e:
            logger.debug(f"Process lookup for pid {pid} failed: {e}")
            executable = None
        name = os.path.splitext(executable)[0] if executable else None
        return ApplicationInfo(pid=pid, name=name, identifier=executable)

    def application_element(self, pid: int) -> Win32Element:
        return Win32Element(pid=pid)

    def copy_element(self, element: Win32Element, attribute: str) -> Optional[Win32Element]:
        if attribute != FOCUSED_WINDOW or element.hwnd is not None:
            return None
        hwnd, pid = self._foreground_window()
        if hwnd is None or pid != element.pid:
            return None
        return Win32Element(pid=element.pid, hwnd=hwnd)

    def copy_string(self, element: Win32Element, attribute: str) -> Optional[str]:
        if attribute == TITLE and element.hwnd:
            return self._gui.GetWindowText(element.hwnd)
        return None

    def copy_frame(self, element: Win32Element) -> Optional[Rect]:
        if not element.hwnd:
            return None
        left, top, right, bottom = self._gui.GetWindowRect(element.hwnd)
        return Rect(float(left), float(top), float(right - left), float(bottom - top))


def default_accessibility() -> AccessibilityQuery:
    """Pick the accessibility backend for the running platform."""
    if sys.platform == "darwin":
        return MacAccessibility()
    if sys.platform == "win32":
        return Win32Accessibility()
    return X11Accessibility()
