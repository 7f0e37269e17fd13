import io

import pytest

from ptcloud.framerate import FrameRate


def make(times):
    it = iter(times)
    out = io.StringIO()
    return FrameRate(clock=lambda: next(it), out=out), out


def test_no_rate_before_step_elapsed():
    fr, out = make([0.0, 0.125, 0.25])
    fr.tick()
    fr.tick()
    assert fr.total_frames == 2
    assert fr.frame_rate == 0.0
    assert out.getvalue() == ""


def test_rate_computed_after_step():
    fr, out = make([0.0, 0.25, 0.5, 0.75])
    fr.tick()
    fr.tick()
    assert fr.frame_time == pytest.approx(0.25)
    assert fr.frame_rate * fr.frame_time == pytest.approx(1.0)
    assert out.getvalue() == fr.detailed() + "\n"
    assert fr.summary() == "  4 fps"
    fr.tick()
    assert out.getvalue().count("\n") == 1


def test_detailed_format():
    fr, _ = make([0.0, 0.25, 0.5])
    fr.tick()
    fr.tick()
    assert fr.detailed() == "0.250 sec   4 fps"


def test_elapsed_time_and_tick_returns_self():
    fr, _ = make([0.0, 1.5, 2.0])
    assert fr.tick() is fr
    assert fr.elapsed_time() == pytest.approx(2.0)