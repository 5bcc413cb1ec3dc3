import math
import unittest

import numpy as np

from opticwarp.geometry import Placement, identity_transform
from opticwarp.scheduler import TransformRequest, WarpScheduler
from opticwarp.sizing import DEFAULT_LIMITS
from opticwarp.warping import WarpOptions, warp_image

OPTIONS = WarpOptions(subdivisions=4, chunk_rows=1)
SQUARE = Placement(x=0.0, y=0.0, width=2.0, height=2.0)
SHIFTED = Placement(x=3.0, y=1.0, width=2.0, height=2.0)


def mirror(x, y):
    return -x, y


def nowhere(x, y):
    return math.inf, math.inf


class RecordingScheduler:
    def __init__(self):
        self.results = []
        self.processing = []
        self.scheduler = WarpScheduler(
            options=OPTIONS,
            limits=DEFAULT_LIMITS,
            on_result=self.results.append,
            on_processing_change=self.processing.append,
        )


class TestWarpScheduler(unittest.TestCase):
    def setUp(self):
        rng = np.random.default_rng(11)
        self.source = rng.integers(0, 256, size=(4, 4, 4), dtype=np.uint8)
        self.source[..., 3] = 255
        self.recorder = RecordingScheduler()
        self.scheduler = self.recorder.scheduler

    def request(self, placement, transform, version):
        return TransformRequest(source=self.source, placement=placement, transform=transform, version=version)

    def test_idle_tick_does_nothing(self):
        self.assertFalse(self.scheduler.tick())
        self.assertEqual(self.scheduler.drain(), 0)
        self.assertFalse(self.scheduler.processing)

    def test_single_request_runs_chunk_by_chunk(self):
        self.scheduler.submit(self.request(SQUARE, identity_transform, 1))
        self.assertTrue(self.scheduler.processing)
        self.assertEqual(self.recorder.processing, [True])

        self.assertTrue(self.scheduler.tick())
        self.assertTrue(self.scheduler.tick())
        self.assertTrue(self.scheduler.tick())
        self.assertFalse(self.scheduler.tick())

        self.assertEqual(self.recorder.processing, [True, False])
        self.assertFalse(self.scheduler.pending)
        np.testing.assert_array_equal(self.scheduler.result.canvas, self.source)

    def test_start_clears_previous_result(self):
        self.scheduler.submit(self.request(SQUARE, identity_transform, 1))
        self.scheduler.drain()
        self.assertTrue(self.scheduler.result.has_image)

        self.scheduler.submit(self.request(SHIFTED, identity_transform, 2))
        self.assertFalse(self.scheduler.result.has_image)
        self.scheduler.drain()
        self.assertAlmostEqual(self.scheduler.result.x, 3.0)

    def test_newer_request_supersedes_running_one(self):
        self.scheduler.submit(self.request(SQUARE, identity_transform, 1))
        self.scheduler.tick()
        self.scheduler.submit(self.request(SHIFTED, mirror, 2))
        self.assertEqual(self.scheduler.active_version, 1)

        self.scheduler.drain()

        expected = warp_image(self.source, SHIFTED, mirror, OPTIONS, DEFAULT_LIMITS)
        final = self.scheduler.result
        np.testing.assert_array_equal(final.canvas, expected.canvas)
        self.assertEqual((final.x, final.y, final.width, final.height), (expected.x, expected.y, expected.width, expected.height))
        self.assertEqual(self.scheduler.discarded, 1)
        # Only the initial clear and the final result are ever delivered.
        delivered = [r for r in self.recorder.results if r.has_image]
        self.assertEqual(len(delivered), 1)
        self.assertEqual(self.recorder.processing, [True, False])

    def test_requests_in_same_tick(self):
        self.scheduler.submit(self.request(SQUARE, identity_transform, 1))
        self.scheduler.submit(self.request(SHIFTED, mirror, 2))
        self.scheduler.drain()
        self.assertAlmostEqual(self.scheduler.result.x, -5.0)
        self.assertEqual(self.scheduler.discarded, 1)

    def test_running_job_is_not_interrupted(self):
        self.scheduler.submit(self.request(SQUARE, identity_transform, 1))
        self.scheduler.tick()
        self.scheduler.submit(self.request(SHIFTED, mirror, 2))
        self.scheduler.submit(self.request(SQUARE, mirror, 3))
        self.scheduler.tick()
        self.assertEqual(self.scheduler.active_version, 1)
        self.scheduler.drain()
        # Version 2 was overwritten before it ever started.
        self.assertEqual(self.scheduler.discarded, 1)
        self.assertAlmostEqual(self.scheduler.result.x, -2.0)

    def test_no_renderable_result(self):
        self.scheduler.submit(self.request(SQUARE, nowhere, 1))
        self.scheduler.drain()
        self.assertIsNone(self.scheduler.result.canvas)
        self.assertFalse(self.scheduler.processing)
        self.assertFalse(self.scheduler.pending)

    def test_empty_result_still_checks_for_newer_request(self):
        self.scheduler.submit(self.request(SQUARE, nowhere, 1))
        self.scheduler.submit(self.request(SQUARE, identity_transform, 2))
        self.scheduler.drain()
        np.testing.assert_array_equal(self.scheduler.result.canvas, self.source)

    def test_failing_transform_leaves_scheduler_idle(self):
        def broken(x, y):
            raise RuntimeError("lens assembly missing")

        self.scheduler.submit(self.request(SQUARE, broken, 1))
        with self.assertRaises(RuntimeError):
            self.scheduler.drain()
        self.assertFalse(self.scheduler.processing)
        self.assertFalse(self.scheduler.pending)
        self.assertIsNone(self.scheduler.active_version)
        self.assertFalse(self.scheduler.tick())
        self.assertEqual(self.recorder.processing, [True, False])

        self.scheduler.submit(self.request(SQUARE, identity_transform, 2))
        self.scheduler.drain()
        np.testing.assert_array_equal(self.scheduler.result.canvas, self.source)

    def test_failing_job_hands_over_to_newer_request(self):
        def broken(x, y):
            raise RuntimeError("lens assembly missing")

        self.scheduler.submit(self.request(SQUARE, broken, 1))
        self.scheduler.submit(self.request(SQUARE, identity_transform, 2))
        with self.assertRaises(RuntimeError):
            self.scheduler.tick()
        self.assertEqual(self.scheduler.active_version, 2)
        self.scheduler.drain()
        np.testing.assert_array_equal(self.scheduler.result.canvas, self.source)
        self.assertFalse(self.scheduler.processing)

    def test_resubmitting_from_result_callback_keeps_processing_on(self):
        def resubmit(result):
            if result.has_image and self.scheduler.latest.version == 1:
                self.scheduler.submit(self.request(SHIFTED, identity_transform, 2))

        self.scheduler.on_result = resubmit
        self.scheduler.submit(self.request(SQUARE, identity_transform, 1))
        while self.scheduler.active_version == 1:
            self.scheduler.tick()
        self.assertEqual(self.scheduler.active_version, 2)
        self.assertTrue(self.scheduler.processing)

        self.scheduler.drain()
        self.assertFalse(self.scheduler.processing)
        self.assertEqual(self.recorder.processing, [True, False, True, False])
        self.assertAlmostEqual(self.scheduler.result.x, 3.0)

    def test_drain_respects_max_ticks(self):
        self.scheduler.submit(self.request(SQUARE, identity_transform, 1))
        self.assertEqual(self.scheduler.drain(max_ticks=2), 2)
        self.assertTrue(self.scheduler.processing)
        self.scheduler.drain()
        self.assertFalse(self.scheduler.processing)


if __name__ == "__main__":
    unittest.main()
