"""Shared fakes for the accessibility and window-capture capabilities."""

import sys
from types import SimpleNamespace
from typing import Optional
from unittest.mock import Mock

import pytest
from PIL import Image

from ambient.accessibility import (
    FOCUSED_UI_ELEMENT,
    FOCUSED_WINDOW,
    SELECTED_TEXT,
    TITLE,
    ApplicationInfo,
)
from ambient.config import Config
from ambient.credentials import CredentialStore
from ambient.geometry import Rect
from ambient.windows import WindowInfo


class FakeAccessibility:
    """In-memory AccessibilityQuery with "app", "window" and "focused" elements."""

    def __init__(
        self,
        app: Optional[ApplicationInfo] = ApplicationInfo(42, "Mail", "com.apple.mail"),
        window_title: Optional[str] = "Inbox",
        frame: Optional[Rect] = Rect(0, 0, 800, 600),
        focused_selection: Optional[str] = None,
        root_selection: Optional[str] = None,
        has_focused_element: bool = True,
        trusted: bool = True,
    ):
        self.app = app
        self.window_title = window_title
        self.frame = frame
        self.focused_selection = focused_selection
        self.root_selection = root_selection
        self.has_focused_element = has_focused_element
        self.trusted = trusted

    def is_trusted(self):
        return self.trusted

    def frontmost_application(self):
        return self.app

    def application_element(self, pid):
        return "app"

    def copy_element(self, element, attribute):
        if element == "app" and attribute == FOCUSED_WINDOW:
            return "window"
        if element == "app" and attribute == FOCUSED_UI_ELEMENT and self.has_focused_element:
            return "focused"
        return None

    def copy_string(self, element, attribute):
        if element == "window" and attribute == TITLE:
            return self.window_title
        if element == "focused" and attribute == SELECTED_TEXT:
            return self.focused_selection
        if element == "app" and attribute == SELECTED_TEXT:
            return self.root_selection
        return None

    def copy_frame(self, element):
        return self.frame if element == "window" else None


class FakeWindowCapture:
    """In-memory WindowCapture that records every capture attempt."""

    def __init__(
        self,
        windows: Optional[list[WindowInfo]] = None,
        images: Optional[dict] = None,
        screen: Optional[Image.Image] = None,
        permitted: bool = True,
    ):
        self.windows = windows
        self.images = images or {}
        self.screen = screen
        self.permitted = permitted
        self.attempts = []

    def preflight_access(self):
        return self.permitted

    def list_windows(self):
        return self.windows

    def capture_window(self, window_id):
        self.attempts.append(window_id)
        image = self.images.get(window_id)
        if isinstance(image, Exception):
            raise image
        return image

    def capture_screen(self):
        self.attempts.append("screen")
        return self.screen


def window(window_id, pid=42, layer=0, bounds=(0, 0, 800, 600), name=None, on_screen=True):
    return WindowInfo(
        window_id=window_id,
        owner_pid=pid,
        layer=layer,
        on_screen=on_screen,
        bounds=Rect(*bounds) if bounds is not None else None,
        name=name,
    )


def chat_response(content, status_code=200):
    response = Mock(status_code=status_code)
    response.json.return_value = {"choices": [{"message": {"content": content}}]}
    return response


@pytest.fixture
def image():
    return Image.new("RGB", (320, 200), (30, 120, 200))


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def empty_credentials(tmp_path):
    return CredentialStore(str(tmp_path / ".settings"), env_var=None)


@pytest.fixture
def credentials(tmp_path):
    store = CredentialStore(str(tmp_path / ".settings"), env_var=None)
    store.save("test-key", store.account)
    return store


class FakeWin32:
    """Stands in for both win32gui and win32process.

    windows maps hwnd to (pid, title, (left, top, right, bottom), visible,
    minimized) and is enumerated in insertion order, topmost first.
    """

    def __init__(self, windows: dict, foreground: int = 0):
        self.windows = windows
        self.foreground = foreground

    def GetForegroundWindow(self):
        return self.foreground

    def GetWindowThreadProcessId(self, hwnd):
        return 1, self.windows[hwnd][0]

    def GetWindowText(self, hwnd):
        return self.windows[hwnd][1]

    def GetWindowRect(self, hwnd):
        return self.windows[hwnd][2]

    def IsWindowVisible(self, hwnd):
        return self.windows[hwnd][3]

    def IsIconic(self, hwnd):
        return self.windows[hwnd][4]

    def EnumWindows(self, callback, extra):
        for hwnd in list(self.windows):
            if not callback(hwnd, extra):
                break


class FakePsutil:
    class Error(Exception):
        pass

    def __init__(self, names: dict):
        self.names = names

    def Process(self, pid):
        if pid not in self.names:
            raise self.Error(f"no such process: {pid}")
        name = self.names[pid]
        return SimpleNamespace(name=lambda: name)


@pytest.fixture
def win32(monkeypatch):
    """Install a FakeWin32 as win32gui/win32process; returns an installer."""
    def install(windows, foreground=0, process_names=None):
        fake = FakeWin32(windows, foreground)
        monkeypatch.setitem(sys.modules, "win32gui", fake)
        monkeypatch.setitem(sys.modules, "win32process", fake)
        monkeypatch.setitem(sys.modules, "psutil", FakePsutil(process_names or {}))
        return fake
    return install
