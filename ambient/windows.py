"""Window screenshot selection.

Picks which on-screen window to photograph for the frontmost process. The
window server usually lists several windows per process (tabs, sheets,
palettes, invisible helpers), and the accessibility layer only reports the
focused window's title and frame, so the two views have to be reconciled:

1. Geometry: the candidate overlapping the focused frame, lowest layer first,
   then largest overlap.
2. Name: the candidate whose name equals or contains the focused title,
   lowest layer first, then largest on-screen area.
3. Full screen of the primary display.

Each step is only tried when the previous one produced no image.

Backends:
    QuartzWindowCapture: CoreGraphics window list and window images (macOS)
    X11WindowCapture: wmctrl / xprop window list, mss region grabs
    Win32WindowCapture: pywin32 EnumWindows z-order, mss region grabs

Example:
    >>> selector = WindowSelector(default_window_capture())
    >>> captured = selector.select_capture_target(pid, "Inbox - Mail", focused_rect)
    >>> captured.target
    WindowHandle(window_id=4211)
"""

import logging
import os
import subprocess
import sys
from dataclasses import dataclass
from typing import Optional, Protocol, Union

import mss
from PIL import Image

from .errors import CaptureUnavailable
from .geometry import Rect

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WindowInfo:
    """One entry of the OS window list, normalized across backends."""
    window_id: Optional[int]
    owner_pid: Optional[int]
    layer: Optional[int]
    on_screen: bool
    bounds: Optional[Rect]
    name: Optional[str]


@dataclass(frozen=True)
class CandidateWindow:
    """A window of the frontmost process considered for capture.

    Attributes:
        id: Window server id
        layer: Stacking layer, lower is closer to the user-perceived front
        bounds: Window frame, None when the window server omitted it
        area: On-screen area used by name matching
        name: Trimmed window name
    """
    id: int
    layer: int
    bounds: Optional[Rect]
    area: int
    name: Optional[str]


@dataclass(frozen=True)
class WindowHandle:
    window_id: int


@dataclass(frozen=True)
class FullScreen:
    pass


CaptureTarget = Union[WindowHandle, FullScreen]


@dataclass(frozen=True)
class CapturedImage:
    """The capture target that produced an image, and that image."""
    target: CaptureTarget
    image: Image.Image


class WindowCapture(Protocol):
    """Screen-capture capability consumed by the selector."""

    def preflight_access(self) -> bool: ...

    def list_windows(self) -> Optional[list[WindowInfo]]: ...

    def capture_window(self, window_id: int) -> Optional[Image.Image]: ...

    def capture_screen(self) -> Optional[Image.Image]: ...


def _clean_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.strip().replace("\n", " ")
    return cleaned or None


def build_candidates(windows: list[WindowInfo], process_id: int) -> list[CandidateWindow]:
    """Keep on-screen windows owned by process_id, in window-list order."""
    candidates = []
    for info in windows:
        if info.owner_pid != process_id or not info.on_screen:
            continue
        if info.window_id is None:
            continue
        width = info.bounds.width if info.bounds else 1
        height = info.bounds.height if info.bounds else 1
        candidates.append(CandidateWindow(
            id=info.window_id,
            layer=info.layer or 0,
            bounds=info.bounds,
            area=int(width * height),
            name=_clean_name(info.name),
        ))
    return candidates


def rank_by_geometry(candidates: list[CandidateWindow], focused_bounds: Rect) -> list[CandidateWindow]:
    """Candidates overlapping focused_bounds, by ascending layer then descending overlap."""
    scored = []
    for candidate in candidates:
        if candidate.bounds is None:
            continue
        overlap = candidate.bounds.overlap_area(focused_bounds)
        if overlap <= 0:
            continue
        scored.append((candidate, overlap))

    scored.sort(key=lambda item: (item[0].layer, -item[1]))
    return [candidate for candidate, _ in scored]


def rank_by_name(candidates: list[CandidateWindow], focused_title: Optional[str]) -> list[CandidateWindow]:
    """Candidates whose name equals or contains the focused title (case-folded)."""
    target = (focused_title or "").strip().casefold()
    if not target:
        return []

    matches = []
    for candidate in candidates:
        name = (candidate.name or "").strip().casefold()
        if name and (name == target or target in name):
            matches.append(candidate)

    matches.sort(key=lambda c: (c.layer, -c.area))
    return matches


def plan_capture_targets(
    candidates: list[CandidateWindow],
    focused_title: Optional[str],
    focused_bounds: Optional[Rect],
) -> list[CaptureTarget]:
    """Ordered capture attempts: geometry pick, name pick, then full screen."""
    plan: list[CaptureTarget] = []
    if focused_bounds is not None and not focused_bounds.is_degenerate:
        by_geometry = rank_by_geometry(candidates, focused_bounds)
        if by_geometry:
            plan.append(WindowHandle(by_geometry[0].id))

        by_name = rank_by_name(candidates, focused_title)
        if by_name and WindowHandle(by_name[0].id) not in plan:
            plan.append(WindowHandle(by_name[0].id))

    plan.append(FullScreen())
    return plan


class WindowSelector:
    """Resolves the frontmost process's focused window to a captured image."""

    def __init__(self, capture: WindowCapture):
        self.capture = capture

    def candidate_windows(self, process_id: int) -> list[CandidateWindow]:
        """
        Raises:
            CaptureUnavailable: If the window list cannot be read
        """
        windows = self.capture.list_windows()
        if windows is None:
            raise CaptureUnavailable("Unable to read window list")
        return build_candidates(windows, process_id)

    def select_capture_target(
        self,
        process_id: Optional[int],
        focused_window_title: Optional[str],
        focused_window_bounds: Optional[Rect],
    ) -> CapturedImage:
        """Pick the window to capture and capture it.

        Args:
            process_id: PID of the frontmost application
            focused_window_title: Accessibility title of the focused window
            focused_window_bounds: Accessibility frame of the focused window

        Returns:
            CapturedImage for the first planned target that produced an image

        Raises:
            CaptureUnavailable: If the window list cannot be read or no target
                (full screen included) produced an image
        """
        candidates = self.candidate_windows(process_id) if process_id is not None else []
        plan = plan_capture_targets(candidates, focused_window_title, focused_window_bounds)
        logger.debug(f"{len(candidates)} candidate window(s), capture plan: {plan}")

        for target in plan:
            image = self._attempt(target)
            if image is not None:
                logger.info(f"Captured {target} ({image.width}x{image.height})")
                return CapturedImage(target, image)
            logger.debug(f"No image from {target}")

        raise CaptureUnavailable(
            "Could not capture screenshot (screen recording permission or window access issue)"
        )

    def _attempt(self, target: CaptureTarget) -> Optional[Image.Image]:
        try:
            if isinstance(target, WindowHandle):
                return self.capture.capture_window(target.window_id)
            return self.capture.capture_screen()
        except Exception as e:
            logger.warning(f"Capture of {target} failed: {e}")
            return None


def grab_primary_monitor() -> Optional[Image.Image]:
    """Capture the primary display with mss."""
    with mss.mss() as sct:
        if len(sct.monitors) < 2:
            logger.warning("No monitors detected")
            return None
        screenshot = sct.grab(sct.monitors[1])  # monitors[0] is all monitors combined
        return Image.frombytes("RGB", screenshot.size, screenshot.rgb)


def grab_region(bounds: Rect) -> Optional[Image.Image]:
    """Capture a screen region with mss."""
    if bounds.is_degenerate:
        return None
    with mss.mss() as sct:
        screenshot = sct.grab(bounds.to_region())
        return Image.frombytes("RGB", screenshot.size, screenshot.rgb)


class QuartzWindowCapture:
    """WindowCapture backed by CoreGraphics (PyObjC Quartz bindings)."""

    def __init__(self):
        import Quartz
        self._q = Quartz

    def preflight_access(self) -> bool:
        return bool(self._q.CGPreflightScreenCaptureAccess())

    def list_windows(self) -> Optional[list[WindowInfo]]:
        q = self._q
        options = q.kCGWindowListOptionOnScreenOnly | q.kCGWindowListExcludeDesktopElements
        raw = q.CGWindowListCopyWindowInfo(options, q.kCGNullWindowID)
        if raw is None:
            return None

        windows = []
        for info in raw:
            bounds = info.get(q.kCGWindowBounds)
            rect = None
            if bounds is not None:
                try:
                    rect = Rect(
                        float(bounds["X"]),
                        float(bounds["Y"]),
                        float(bounds["Width"]),
                        float(bounds["Height"]),
                    )
                except (KeyError, TypeError, ValueError):
                    rect = None
            number = info.get(q.kCGWindowNumber)
            pid = info.get(q.kCGWindowOwnerPID)
            layer = info.get(q.kCGWindowLayer)
            windows.append(WindowInfo(
                window_id=int(number) if number is not None else None,
                owner_pid=int(pid) if pid is not None else None,
                layer=int(layer) if layer is not None else None,
                on_screen=bool(info.get(q.kCGWindowIsOnscreen, False)),
                bounds=rect,
                name=info.get(q.kCGWindowName),
            ))
        return windows

    def capture_window(self, window_id: int) -> Optional[Image.Image]:
        q = self._q
        cg_image = q.CGWindowListCreateImage(
            q.CGRectNull,
            q.kCGWindowListOptionIncludingWindow,
            window_id,
            q.kCGWindowImageBestResolution,
        )
        return self._to_pil(cg_image)

    def capture_screen(self) -> Optional[Image.Image]:
        return grab_primary_monitor()

    def _to_pil(self, cg_image) -> Optional[Image.Image]:
        if cg_image is None:
            return None
        q = self._q
        width = q.CGImageGetWidth(cg_image)
        height = q.CGImageGetHeight(cg_image)
        if width == 0 or height == 0:
            return None
        bytes_per_row = q.CGImageGetBytesPerRow(cg_image)
        data = q.CGDataProviderCopyData(q.CGImageGetDataProvider(cg_image))
        img = Image.frombuffer("RGBA", (width, height), bytes(data), "raw", "BGRA", bytes_per_row, 1)
        return img.convert("RGB")


class X11WindowCapture:
    """WindowCapture for X11 using wmctrl, xprop and mss.

    Layers come from the root window's _NET_CLIENT_LIST_STACKING property:
    the topmost window gets layer 0, the one below it layer 1, and so on.
    """

    def __init__(self, timeout: float = 2.0):
        self.timeout = timeout
        self._bounds: dict[int, Rect] = {}

    def _run(self, args: list[str]) -> Optional[str]:
        try:
            return subprocess.check_output(
                args,
                stderr=subprocess.DEVNULL,
                timeout=self.timeout
            ).decode(errors='replace')
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError) as e:
            logger.debug(f"{args[0]} failed: {e}")
            return None

    def preflight_access(self) -> bool:
        # TODO: Wayland sessions need a portal-based backend; mss only reaches XWayland
        return bool(os.environ.get("DISPLAY"))

    def _stacking_layers(self) -> dict[int, int]:
        output = self._run(['xprop', '-root', '_NET_CLIENT_LIST_STACKING'])
        if not output or '#' not in output:
            return {}
        ids = []
        for token in output.split('#', 1)[1].split(','):
            try:
                ids.append(int(token.strip(), 16))
            except ValueError:
                continue
        # Property lists bottom-to-top
        return {wid: layer for layer, wid in enumerate(reversed(ids))}

    def _current_desktop(self) -> Optional[int]:
        output = self._run(['wmctrl', '-d'])
        for line in (output or "").splitlines():
            parts = line.split()
            if len(parts) >= 2 and parts[1] == '*':
                try:
                    return int(parts[0])
                except ValueError:
                    return None
        return None

    def list_windows(self) -> Optional[list[WindowInfo]]:
        output = self._run(['wmctrl', '-lpG'])
        if output is None:
            return None

        layers = self._stacking_layers()
        desktop = self._current_desktop()
        windows = []
        self._bounds = {}

        # 0x03a00003  0 12345  10 40 1280 720 host Window title
        for line in output.splitlines():
            parts = line.split(None, 8)
            if len(parts) < 8:
                continue
            try:
                window_id = int(parts[0], 16)
                window_desktop = int(parts[1])
                pid = int(parts[2])
                rect = Rect(float(parts[3]), float(parts[4]), float(parts[5]), float(parts[6]))
            except ValueError:
                logger.debug(f"Skipping unparseable wmctrl line: {line}")
                continue

            on_screen = (window_desktop == -1 or desktop is None or window_desktop == desktop)
            self._bounds[window_id] = rect
            windows.append(WindowInfo(
                window_id=window_id,
                owner_pid=pid,
                layer=layers.get(window_id, len(layers)),
                on_screen=on_screen and not rect.is_degenerate,
                bounds=rect,
                name=parts[8] if len(parts) > 8 else None,
            ))
        return windows

    def capture_window(self, window_id: int) -> Optional[Image.Image]:
        bounds = self._bounds.get(window_id)
        if bounds is None:
            return None
        return grab_region(bounds)

    def capture_screen(self) -> Optional[Image.Image]:
        return grab_primary_monitor()


class Win32WindowCapture:
    """WindowCapture for Windows using pywin32 window enumeration and mss grabs.

    EnumWindows walks top-level windows in z-order, topmost first, so the
    enumeration index is the layer. Minimized and hidden windows are not on
    screen.
    """

    def __init__(self):
        import win32gui
        import win32process
        self._gui = win32gui
        self._process = win32process
        self._bounds: dict[int, Rect] = {}

    def preflight_access(self) -> bool:
        return True

    def list_windows(self) -> Optional[list[WindowInfo]]:
        handles = []

        def collect(hwnd, _):
            handles.append(hwnd)
            return True

        try:
            self._gui.EnumWindows(collect, None)
        except Exception as e:
            logger.warning(f"EnumWindows failed: {e}")
            return None

        windows = []
        self._bounds = {}
        for layer, hwnd in enumerate(handles):
            try:
                left, top, right, bottom = self._gui.GetWindowRect(hwnd)
                _, pid = self._process.GetWindowThreadProcessId(hwnd)
                visible = self._gui.IsWindowVisible(hwnd) and not self._gui.IsIconic(hwnd)
                name = self._gui.GetWindowText(hwnd)
            except Exception as e:
                logger.debug(f"Skipping window {hwnd}: {e}")
                continue

            rect = Rect(float(left), float(top), float(right - left), float(bottom - top))
            self._bounds[int(hwnd)] = rect
            windows.append(WindowInfo(
                window_id=int(hwnd),
                owner_pid=int(pid),
                layer=layer,
                on_screen=bool(visible) and not rect.is_degenerate,
                bounds=rect,
                name=name,
            ))
        return windows

    def capture_window(self, window_id: int) -> Optional[Image.Image]:
        bounds = self._bounds.get(window_id)
        if bounds is None:
            return None
        return grab_region(bounds)

    def capture_screen(self) -> Optional[Image.Image]:
        return grab_primary_monitor()


def default_window_capture() -> WindowCapture:
    """Pick the window capture backend for the running platform."""
    if sys.platform == "darwin":
        return QuartzWindowCapture()
    if sys.platform == "win32":
        return Win32WindowCapture()
    return X11WindowCapture()
