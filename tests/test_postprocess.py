import unittest

import numpy as np

from cutout.buffers import ScratchPool
from cutout.errors import InvalidMask
from cutout.postprocess import MaskUpsampler, as_mask_u8, restore_mask_to_original


class TestMaskUpsampler(unittest.TestCase):
    def test_resize_blur_spreads_a_dot(self):
        src = np.zeros((10, 10), dtype=np.uint8)
        src[5, 5] = 255
        dst = MaskUpsampler().resize_blur(src, 20, 20)
        self.assertEqual(dst.shape, (20, 20))
        self.assertEqual(dst.dtype, np.uint8)
        self.assertTrue(((dst > 0) & (dst < 255)).any())

    def test_uniform_mask_stays_uniform(self):
        src = np.full((8, 8), 255, dtype=np.uint8)
        dst = MaskUpsampler().resize_blur(src, 33, 17)
        self.assertEqual(dst.shape, (17, 33))
        self.assertTrue((dst == 255).all())

    def test_box_blur_on_same_size(self):
        src = np.zeros((1, 11), dtype=np.uint8)
        src[0, 5] = 250
        dst = MaskUpsampler().resize_blur(src, 11, 1)
        # 5-wide window, single row: every pixel within 2 of the dot gets 250/5
        np.testing.assert_array_equal(dst[0, 3:8], np.full(5, 50, dtype=np.uint8))
        self.assertEqual(int(dst[0, 2]), 0)
        self.assertEqual(int(dst[0, 8]), 0)

    def test_edges_replicate_nearest_pixel(self):
        src = np.zeros((1, 10), dtype=np.uint8)
        src[0, 0] = 255
        dst = MaskUpsampler().resize_blur(src, 10, 1)
        # window at x=0 sees [255, 255, 255, 0, 0] after clamping
        self.assertEqual(int(dst[0, 0]), 153)

    def test_buffers_are_reused_across_calls(self):
        pool = ScratchPool()
        up = MaskUpsampler(pool)
        up.resize_blur(np.zeros((4, 4), dtype=np.uint8), 40, 40)
        up.resize_blur(np.zeros((4, 4), dtype=np.uint8), 10, 10)
        self.assertEqual(len(pool._pool), 1)
        buf = pool.get(1)
        self.assertGreaterEqual(buf.capacity, 1600)

    def test_invalid_inputs(self):
        up = MaskUpsampler()
        with self.assertRaises(InvalidMask):
            up.resize_blur(None, 10, 10)
        with self.assertRaises(InvalidMask):
            up.resize_blur(np.zeros((0, 0), dtype=np.uint8), 10, 10)
        with self.assertRaises(InvalidMask):
            up.resize_blur(np.zeros((4, 4), dtype=np.uint8), 0, 10)

    def test_restore_to_original(self):
        src = np.zeros((32, 32), dtype=np.uint8)
        src[8:24, 8:24] = 255
        restored = restore_mask_to_original(src, 256, 64)
        self.assertEqual(restored.shape, (64, 256))
        self.assertEqual(int(restored[32, 128]), 255)
        self.assertEqual(int(restored[0, 0]), 0)

    def test_float_masks_are_probabilities(self):
        m = as_mask_u8(np.array([[0.0, 0.5, 1.0, 2.0]], dtype=np.float32))
        np.testing.assert_array_equal(m, np.array([[0, 127, 255, 255]], dtype=np.uint8))


if __name__ == "__main__":
    unittest.main()
