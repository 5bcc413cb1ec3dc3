import math
import unittest

import numpy as np

from opticwarp.geometry import Placement, identity_transform
from opticwarp.optics import thin_lens
from opticwarp.sizing import DEFAULT_LIMITS
from opticwarp.warping import MeshWarper, WarpOptions, WarpResult, tint_buffer, warp_image


def make_source(height=4, width=4, seed=0):
    rng = np.random.default_rng(seed)
    image = rng.integers(0, 256, size=(height, width, 4), dtype=np.uint8)
    image[..., 3] = 255
    return image


SQUARE = Placement(x=0.0, y=0.0, width=2.0, height=2.0)


class TestMeshWarp(unittest.TestCase):
    def test_identity_reproduces_source(self):
        source = make_source()
        result = warp_image(source, SQUARE, identity_transform, WarpOptions(subdivisions=4), DEFAULT_LIMITS)
        self.assertTrue(result.has_image)
        self.assertEqual((result.x, result.y, result.width, result.height), (0.0, 0.0, 2.0, 2.0))
        np.testing.assert_array_equal(result.canvas, source)

    def test_plane_mirror_flips_pixels(self):
        source = make_source(seed=1)
        placement = Placement(x=-2.0, y=0.0, width=2.0, height=2.0)
        result = warp_image(source, placement, lambda x, y: (-x, y), WarpOptions(subdivisions=4), DEFAULT_LIMITS)
        self.assertAlmostEqual(result.x, 0.0)
        self.assertAlmostEqual(result.y, 0.0)
        self.assertAlmostEqual(result.width, 2.0)
        self.assertAlmostEqual(result.height, 2.0)
        np.testing.assert_array_equal(result.canvas, source[:, ::-1])

    def test_plane_mirror_about_origin(self):
        source = make_source(seed=2)
        result = warp_image(source, SQUARE, lambda x, y: (-x, y), WarpOptions(subdivisions=4), DEFAULT_LIMITS)
        self.assertAlmostEqual(result.x, -2.0)
        np.testing.assert_array_equal(result.canvas, source[:, ::-1])

    def test_fine_mesh_has_no_seams(self):
        # Quads smaller than a source pixel, with the default 2px extrusion.
        source = make_source(seed=3)
        result = warp_image(source, SQUARE, lambda x, y: (-x, y), WarpOptions(subdivisions=8), DEFAULT_LIMITS)
        np.testing.assert_array_equal(result.canvas, source[:, ::-1])

    def test_all_infinite_is_empty(self):
        result = warp_image(make_source(), SQUARE, lambda x, y: (math.inf, math.inf), WarpOptions(subdivisions=4), DEFAULT_LIMITS)
        self.assertIsNone(result.canvas)
        self.assertFalse(result.has_image)

    def test_focal_plane_lens_is_empty(self):
        # Every object point sits on the focal plane of an f=1 lens.
        placement = Placement(x=-1.0, y=-1.0, width=1e-4, height=2.0)
        result = warp_image(make_source(), placement, thin_lens(1.0), WarpOptions(subdivisions=4), DEFAULT_LIMITS)
        self.assertIsNone(result.canvas)

    def test_quads_with_rejected_corners_are_skipped(self):
        source = make_source(seed=4)

        def transform(x, y):
            return (x, y) if x >= 1.0 else (math.inf, math.inf)

        warper = MeshWarper(source, SQUARE, transform, WarpOptions(subdivisions=4), DEFAULT_LIMITS)
        self.assertTrue(warper.prepare())
        warper.render_rows(0, 4)
        result = warper.finish()
        self.assertEqual(warper.skipped_quads, 8)
        self.assertAlmostEqual(result.x, 1.0)
        self.assertEqual(result.canvas.shape, (4, 2, 4))
        np.testing.assert_array_equal(result.canvas, source[:, 2:])

    def test_transform_undefined_past_an_edge(self):
        source = make_source(seed=6)

        def transform(x, y):
            return x, y + math.sqrt(1.0 - x * x)

        warper = MeshWarper(source, SQUARE, transform, WarpOptions(subdivisions=4), DEFAULT_LIMITS)
        self.assertTrue(warper.prepare())
        warper.render_rows(0, 4)
        result = warper.finish()
        self.assertTrue(result.has_image)
        self.assertEqual(warper.skipped_quads, 8)
        self.assertAlmostEqual(result.x, 0.0)
        self.assertAlmostEqual(result.width, 1.0)

    def test_interior_hole_stays_transparent(self):
        source = make_source(seed=5)

        def transform(x, y):
            return (math.inf, math.inf) if 0.9 < x < 1.1 else (x, y)

        result = warp_image(source, SQUARE, transform, WarpOptions(subdivisions=4, smooth=0.0), DEFAULT_LIMITS)
        self.assertEqual(result.canvas.shape, (4, 4, 4))
        self.assertTrue((result.canvas[:, 1:3, 3] == 0).all())
        np.testing.assert_array_equal(result.canvas[:, 0], source[:, 0])
        np.testing.assert_array_equal(result.canvas[:, 3], source[:, 3])

    def test_repeat_warp_is_bit_identical(self):
        source = make_source(16, 12, seed=6)
        placement = Placement(x=-4.0, y=-1.0, width=1.5, height=2.0, rotation=10.0)
        options = WarpOptions(subdivisions=8)
        first = warp_image(source, placement, thin_lens(1.5), options, DEFAULT_LIMITS)
        second = warp_image(source, placement, thin_lens(1.5), options, DEFAULT_LIMITS)
        self.assertTrue(first.has_image)
        np.testing.assert_array_equal(first.canvas, second.canvas)
        self.assertEqual((first.x, first.y, first.width, first.height), (second.x, second.y, second.width, second.height))

    def test_real_image_through_lens_is_inverted(self):
        # Object at 2f: real, inverted, same size, on the far side.
        source = make_source(8, 8, seed=7)
        placement = Placement(x=-3.0, y=-1.0, width=2.0, height=2.0)
        result = warp_image(source, placement, thin_lens(1.0), WarpOptions(subdivisions=8), DEFAULT_LIMITS)
        self.assertTrue(result.has_image)
        self.assertGreater(result.x, 0.0)
        self.assertTrue((result.canvas[..., 3] > 0).any())

    def test_pixel_budget_option(self):
        source = make_source(8, 8)
        result = warp_image(source, SQUARE, identity_transform, WarpOptions(subdivisions=4, max_pixels=16), DEFAULT_LIMITS)
        self.assertEqual(result.canvas.shape[:2], (4, 4))
        self.assertAlmostEqual(result.width, 2.0)

    def test_bilinear_on_flat_colour(self):
        source = np.zeros((4, 4, 4), dtype=np.uint8)
        source[...] = (10, 200, 30, 255)
        options = WarpOptions(subdivisions=4, interpolation="bilinear")
        result = warp_image(source, SQUARE, lambda x, y: (-x, 0.5 * y), options, DEFAULT_LIMITS)
        painted = result.canvas[..., 3] > 0
        self.assertTrue(painted.all())
        self.assertTrue((result.canvas[painted] == (10, 200, 30, 255)).all())

    def test_chunks_yield_between_row_bands(self):
        warper = MeshWarper(make_source(), SQUARE, identity_transform, WarpOptions(subdivisions=25, chunk_rows=10), DEFAULT_LIMITS)
        chunks = warper.iter_chunks()
        progress = []
        while True:
            try:
                progress.append(next(chunks))
            except StopIteration as stop:
                result = stop.value
                break
        self.assertEqual(progress, [10, 20])
        self.assertTrue(warper.done)
        self.assertIsInstance(result, WarpResult)

    def test_unplaced_image_is_rejected(self):
        with self.assertRaises(ValueError):
            MeshWarper(make_source(), Placement(), identity_transform)


class TestDegenerate(unittest.TestCase):
    def test_point_image_is_tinted(self):
        options = WarpOptions(subdivisions=4, highlight_if_degenerate=True)
        result = warp_image(make_source(), SQUARE, lambda x, y: (1.0, 1.0), options, DEFAULT_LIMITS)
        self.assertEqual(result.canvas.shape, (1, 1, 4))
        self.assertEqual(result.canvas[0, 0].tolist(), [255, 0, 0, 89])
        self.assertEqual(result.width, 0.0)

    def test_point_image_untinted_without_flag(self):
        result = warp_image(make_source(), SQUARE, lambda x, y: (1.0, 1.0), WarpOptions(subdivisions=4), DEFAULT_LIMITS)
        self.assertEqual(result.canvas[0, 0].tolist(), [0, 0, 0, 0])

    def test_large_image_not_tinted(self):
        options = WarpOptions(subdivisions=4, highlight_if_degenerate=True)
        source = make_source()
        result = warp_image(source, SQUARE, identity_transform, options, DEFAULT_LIMITS)
        np.testing.assert_array_equal(result.canvas, source)

    def test_tint_composites_over_opaque(self):
        buffer = np.full((2, 2, 4), 255, dtype=np.uint8)
        tint_buffer(buffer)
        self.assertEqual(buffer[0, 0].tolist(), [255, 166, 166, 255])


class TestWarpOptions(unittest.TestCase):
    def test_mobile_preset(self):
        self.assertEqual(WarpOptions.mobile().subdivisions, 100)
        self.assertTrue(WarpOptions.mobile(highlight_if_degenerate=True).highlight_if_degenerate)

    def test_validation(self):
        with self.assertRaises(ValueError):
            WarpOptions(subdivisions=0)
        with self.assertRaises(ValueError):
            WarpOptions(chunk_rows=0)
        with self.assertRaises(ValueError):
            WarpOptions(interpolation="cubic")


if __name__ == "__main__":
    unittest.main()
