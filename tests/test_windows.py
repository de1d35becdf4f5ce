"""Window selection: candidate filtering, geometry and name ranking, capture fallback."""

import sys

import pytest
from PIL import Image

from ambient.errors import CaptureUnavailable
from ambient.geometry import Rect
from ambient.windows import (
    FullScreen,
    WindowHandle,
    Win32WindowCapture,
    WindowSelector,
    X11WindowCapture,
    build_candidates,
    default_window_capture,
    plan_capture_targets,
    rank_by_geometry,
    rank_by_name,
)

from conftest import FakeWindowCapture, window


FOCUSED = Rect(100, 100, 800, 600)


def test_build_candidates_filters_owner_and_visibility():
    windows = [
        window(1),
        window(2, pid=7),
        window(3, on_screen=False),
        window(None),
        window(5, layer=None, bounds=None, name="  Draft \n"),
    ]
    candidates = build_candidates(windows, 42)

    assert [c.id for c in candidates] == [1, 5]
    assert candidates[1].layer == 0
    assert candidates[1].area == 1
    assert candidates[1].name == "Draft"


def test_single_intersecting_candidate_wins_regardless_of_area():
    candidates = build_candidates([
        window(1, bounds=(2000, 0, 5000, 5000)),
        window(2, bounds=(850, 650, 100, 100)),
        window(3, bounds=None),
    ], 42)

    ranked = rank_by_geometry(candidates, FOCUSED)

    assert [c.id for c in ranked] == [2]


def test_equal_overlap_lower_layer_wins():
    candidates = build_candidates([
        window(1, layer=3, bounds=(100, 100, 800, 600)),
        window(2, layer=0, bounds=(100, 100, 800, 600)),
    ], 42)

    assert rank_by_geometry(candidates, FOCUSED)[0].id == 2


def test_equal_layer_larger_overlap_wins():
    candidates = build_candidates([
        window(1, bounds=(100, 100, 200, 200)),
        window(2, bounds=(100, 100, 800, 600)),
    ], 42)

    assert rank_by_geometry(candidates, FOCUSED)[0].id == 2


def test_layer_beats_overlap():
    candidates = build_candidates([
        window(1, layer=1, bounds=(100, 100, 800, 600)),
        window(2, layer=0, bounds=(100, 100, 10, 10)),
    ], 42)

    assert rank_by_geometry(candidates, FOCUSED)[0].id == 2


def test_touching_edges_do_not_intersect():
    candidates = build_candidates([window(1, bounds=(900, 100, 300, 300))], 42)

    assert rank_by_geometry(candidates, FOCUSED) == []


def test_name_match_is_case_folded_and_ranked():
    candidates = build_candidates([
        window(1, layer=0, bounds=(0, 0, 100, 100), name="INBOX - Mail"),
        window(2, layer=0, bounds=(0, 0, 500, 500), name="Inbox"),
        window(3, layer=0, bounds=(0, 0, 900, 900), name="Drafts"),
        window(4, layer=2, bounds=(0, 0, 2000, 2000), name="inbox"),
    ], 42)

    ranked = rank_by_name(candidates, "  inbox ")

    assert [c.id for c in ranked] == [2, 1, 4]


def test_name_match_requires_both_sides_non_empty():
    candidates = build_candidates([window(1, name=None), window(2, name="Inbox")], 42)

    assert rank_by_name(candidates, "   ") == []
    assert rank_by_name(candidates, None) == []


def test_plan_without_bounds_is_full_screen_only():
    candidates = build_candidates([window(1, name="Inbox")], 42)

    assert plan_capture_targets(candidates, "Inbox", None) == [FullScreen()]
    assert plan_capture_targets(candidates, "Inbox", Rect(0, 0, 0, 600)) == [FullScreen()]


def test_plan_orders_geometry_then_name_then_screen():
    candidates = build_candidates([
        window(1, bounds=(100, 100, 800, 600), name="Compose"),
        window(2, bounds=(3000, 0, 800, 600), name="Inbox"),
    ], 42)

    plan = plan_capture_targets(candidates, "Inbox", FOCUSED)

    assert plan == [WindowHandle(1), WindowHandle(2), FullScreen()]


def test_selector_falls_back_to_name_match(image):
    backend = FakeWindowCapture(
        windows=[
            window(1, bounds=(100, 100, 800, 600), name="Compose"),
            window(2, bounds=(3000, 0, 800, 600), name="Inbox"),
        ],
        images={2: image},
    )

    captured = WindowSelector(backend).select_capture_target(42, "Inbox", FOCUSED)

    assert captured.target == WindowHandle(2)
    assert captured.image is image
    assert backend.attempts == [1, 2]


def test_selector_falls_back_to_full_screen_when_capture_raises(image):
    backend = FakeWindowCapture(
        windows=[window(1, bounds=(100, 100, 800, 600))],
        images={1: RuntimeError("window vanished")},
        screen=image,
    )

    captured = WindowSelector(backend).select_capture_target(42, "Inbox", FOCUSED)

    assert captured.target == FullScreen()
    assert backend.attempts == [1, "screen"]


def test_selector_unreadable_window_list():
    backend = FakeWindowCapture(windows=None, screen=Image.new("RGB", (10, 10)))

    with pytest.raises(CaptureUnavailable, match="Unable to read window list"):
        WindowSelector(backend).select_capture_target(42, "Inbox", FOCUSED)


def test_selector_nothing_captured():
    backend = FakeWindowCapture(windows=[window(1)])

    with pytest.raises(CaptureUnavailable):
        WindowSelector(backend).select_capture_target(42, "Inbox", FOCUSED)
    assert backend.attempts == [1, "screen"]


WMCTRL_LIST = (
    "0x03a00003  0 4242   10 40  1280 720  host vim daemon.py\n"
    "0x03a00007 -1 4242   0 0    1920 32   host\n"
    "0x04200001  1 4242   0 0    800 600   host Notes on desktop two\n"
    "0x05000001  0 77     0 0    640 480   host Not stacked\n"
    "garbage line\n"
)
WMCTRL_DESKTOPS = (
    "0  * DG: 3840x1080  VP: 0,0  WA: 0,32 3840x1048  Workspace 1\n"
    "1  - DG: 3840x1080  VP: N/A  WA: 0,32 3840x1048  Workspace 2\n"
)
STACKING = "_NET_CLIENT_LIST_STACKING(WINDOW): window id # 0x4200001, 0x3a00007, 0x3a00003"


def _x11_capture(outputs):
    backend = X11WindowCapture()
    backend._run = lambda args: outputs.get(tuple(args))
    return backend


def test_x11_list_windows_parses_wmctrl():
    backend = _x11_capture({
        ('wmctrl', '-lpG'): WMCTRL_LIST,
        ('wmctrl', '-d'): WMCTRL_DESKTOPS,
        ('xprop', '-root', '_NET_CLIENT_LIST_STACKING'): STACKING,
    })

    windows = {info.window_id: info for info in backend.list_windows()}

    assert len(windows) == 4
    editor = windows[0x3a00003]
    assert editor.owner_pid == 4242
    assert editor.bounds == Rect(10, 40, 1280, 720)
    assert editor.name == "vim daemon.py"
    assert editor.on_screen

    sticky = windows[0x3a00007]
    assert sticky.name is None
    assert sticky.on_screen

    assert not windows[0x4200001].on_screen
    assert windows[0x4200001].name == "Notes on desktop two"


def test_x11_stacking_order_maps_topmost_to_layer_zero():
    backend = _x11_capture({
        ('wmctrl', '-lpG'): WMCTRL_LIST,
        ('wmctrl', '-d'): WMCTRL_DESKTOPS,
        ('xprop', '-root', '_NET_CLIENT_LIST_STACKING'): STACKING,
    })

    layers = {info.window_id: info.layer for info in backend.list_windows()}

    assert layers[0x3a00003] == 0
    assert layers[0x3a00007] == 1
    assert layers[0x4200001] == 2
    assert layers[0x5000001] == 3


def test_x11_layers_drive_geometry_ranking():
    backend = _x11_capture({
        ('wmctrl', '-lpG'): WMCTRL_LIST,
        ('wmctrl', '-d'): WMCTRL_DESKTOPS,
        ('xprop', '-root', '_NET_CLIENT_LIST_STACKING'): STACKING,
    })

    candidates = build_candidates(backend.list_windows(), 4242)
    ranked = rank_by_geometry(candidates, Rect(0, 0, 1920, 1080))

    assert [c.id for c in ranked] == [0x3a00003, 0x3a00007]


def test_x11_unreadable_window_list():
    backend = _x11_capture({})

    assert backend.list_windows() is None
    assert backend.capture_window(0x3a00003) is None


def test_win32_list_windows_uses_enumeration_order(win32):
    win32({
        0x10: (4242, "Budget.xlsx - Excel", (0, 0, 1600, 900), True, False),
        0x20: (4242, "Find", (200, 200, 600, 400), True, False),
        0x30: (4242, "Old report", (0, 0, 1600, 900), True, True),
        0x40: (99, "", (0, 0, 0, 0), False, False),
    })

    windows = Win32WindowCapture().list_windows()

    assert [(w.window_id, w.layer, w.on_screen) for w in windows] == [
        (0x10, 0, True),
        (0x20, 1, True),
        (0x30, 2, False),
        (0x40, 3, False),
    ]
    assert windows[1].bounds == Rect(200, 200, 400, 200)
    assert [c.id for c in build_candidates(windows, 4242)] == [0x10, 0x20]


def test_default_window_capture_on_windows(win32, monkeypatch):
    win32({})
    monkeypatch.setattr(sys, "platform", "win32")

    assert isinstance(default_window_capture(), Win32WindowCapture)
