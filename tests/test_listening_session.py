import unittest

import numpy as np

from beat_detector import BeatEvent, SpectrumFrame
from config import Config
from listening_session import DisplayState, ListeningSession

SAMPLE_RATE = 44100
BINS = 256


def frame(value: float, now_ms: float) -> SpectrumFrame:
    return SpectrumFrame(np.full(BINS, value), SAMPLE_RATE, now_ms)


class ListFrameSource:
    """Hands out queued frames one per poll, like the audio engine."""

    def __init__(self, frames=None):
        self.frames = list(frames or [])
        self.started = False
        self.stopped = False

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def poll_frame(self):
        if not self.frames:
            return None
        return self.frames.pop(0)


def pulse_frames(pulse_times, end_ms, tick_ms=10.0):
    pulses = {int(t) for t in pulse_times}
    frames = []
    for i in range(int(end_ms / tick_ms) + 1):
        now = i * tick_ms
        frames.append(frame(255.0 if int(now) in pulses else 0.0, now))
    return frames


class TestListeningSession(unittest.TestCase):
    def setUp(self):
        self.states = []
        self.source = ListFrameSource()
        self.session = ListeningSession(Config(), self.source, on_state=self.states.append)

    def test_start_and_stop_drive_collaborators(self):
        self.session.start()
        self.assertTrue(self.source.started)
        self.assertTrue(self.session.detector.running)
        self.assertEqual(self.session.state, DisplayState(listening=True))

        self.session.stop()
        self.assertTrue(self.source.stopped)
        self.assertFalse(self.session.detector.running)
        self.assertEqual(self.session.state, DisplayState())

    def test_counts_through_a_cycle(self):
        self.session.start()
        pulses = [1000.0 + 500.0 * k for k in range(10)]
        for f in pulse_frames(pulses, pulses[-1] + 50.0):
            self.session.step(f)

        beat_states = [s for s in self.states if s.current_beat]
        positions = []
        for s in beat_states:
            if not positions or positions[-1] != s.current_beat:
                positions.append(s.current_beat)
        self.assertEqual(positions, [1, 2, 3, 4, 5, 6, 7, 8, 1, 2])
        self.assertEqual(self.session.state.cycle, 2)
        self.assertTrue(any(s.is_dash_beat and s.current_beat == 4 for s in beat_states))
        self.assertGreater(self.session.state.bpm, 0)

    def test_no_music_after_start_timeout(self):
        self.session.start()
        for i in range(500):
            self.session.step(frame(0.0, i * 10.0))
        self.assertFalse(self.session.state.no_music_detected)

        self.session.step(frame(0.0, 5000.0))
        self.assertTrue(self.session.state.no_music_detected)
        self.assertEqual(self.session.state.current_beat, 0)

    def test_music_stopped_clears_display(self):
        self.session.start()
        pulses = [1000.0 + 500.0 * k for k in range(4)]
        for f in pulse_frames(pulses, 2500.0):
            self.session.step(f)
        self.assertEqual(self.session.state.current_beat, 4)

        for f in pulse_frames([], 5000.0)[251:]:
            self.session.step(f)

        self.assertEqual(self.session.state, DisplayState(listening=True, no_music_detected=True))

    def test_beat_after_idle_clears_no_music_flag(self):
        self.session.start()
        for f in pulse_frames([5500.0], 5600.0):
            self.session.step(f)
        self.assertFalse(self.session.state.no_music_detected)
        self.assertEqual(self.session.state.current_beat, 1)

    def test_duplicate_guard_drops_close_beats(self):
        self.session.start()

        self.session._deliver(BeatEvent(True, True, 1000.0, 9.0), 1000.0)
        self.session._deliver(BeatEvent(True, False, 1060.0, 9.0), 1060.0)
        self.assertEqual(self.session.state.current_beat, 1)
        self.assertEqual(self.session.tracker.last_beat_time, 1000.0)

        self.session._deliver(BeatEvent(True, False, 1200.0, 9.0), 1200.0)
        self.assertEqual(self.session.state.current_beat, 2)
        self.assertEqual(self.session.tracker.last_beat_time, 1200.0)

    def test_step_ignored_when_not_running(self):
        state = self.session.step(frame(255.0, 0.0))
        self.assertEqual(state, DisplayState())
        self.assertEqual(self.states, [])

    def test_run_stops_at_tick_boundary(self):
        clock_ms = [0.0]

        def clock():
            return clock_ms[0] / 1000.0

        def sleep(seconds):
            clock_ms[0] += seconds * 1000.0

        source = ListFrameSource(pulse_frames([1000.0], 1200.0))
        session = ListeningSession(Config(), source, clock=clock, sleep=sleep)
        ticks = []

        def on_state(state):
            ticks.append(state)
            if state.current_beat:
                session.stop()

        session.on_state = on_state
        session.start()
        session.run()

        self.assertFalse(session.running)
        self.assertTrue(source.stopped)
        self.assertGreater(len(source.frames), 0)

    def test_run_honours_max_ticks(self):
        slept = []
        session = ListeningSession(Config(), ListFrameSource(), clock=lambda: 0.0, sleep=slept.append)
        session.start()
        session.run(max_ticks=3)
        self.assertEqual(len(slept), 2)
        self.assertAlmostEqual(slept[0], 1.0 / 60.0)


if __name__ == "__main__":
    unittest.main()
