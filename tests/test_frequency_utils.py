import unittest

import numpy as np

from frequency_utils import band_weights, bin_width_hz, byte_magnitudes, weighted_energy


class TestFrequencyUtils(unittest.TestCase):
    def test_bin_width(self):
        # sample_rate=1000, N=10 => 50 Hz per bin
        self.assertAlmostEqual(bin_width_hz(1000, 10), 50.0)
        self.assertEqual(bin_width_hz(1000, 0), 0.0)
        self.assertEqual(bin_width_hz(0, 10), 0.0)

    def test_band_weights(self):
        # 20 Hz bins: 0,20,...,280
        weights = band_weights(15, 600)
        expected = [0.5, 0.5, 3.0, 3.0, 3.0, 3.0, 3.0, 1.5, 1.5, 1.5, 1.5, 0.5, 0.5, 0.5, 0.5]
        np.testing.assert_allclose(weights, expected)

    def test_weighted_energy_emphasises_kick(self):
        kick = np.zeros(15)
        kick[3] = 100.0
        treble = np.zeros(15)
        treble[13] = 100.0
        self.assertGreater(weighted_energy(kick, 600), weighted_energy(treble, 600))
        self.assertAlmostEqual(weighted_energy(kick, 600), 300.0 / np.sum(band_weights(15, 600)))

    def test_weighted_energy_flat_spectrum_is_identity(self):
        self.assertAlmostEqual(weighted_energy(np.full(1024, 7.0), 44100), 7.0)

    def test_weighted_energy_empty(self):
        self.assertEqual(weighted_energy([], 44100), 0.0)

    def test_byte_magnitudes_scale(self):
        spectrum = np.array([0.0, 10 ** (-100 / 20), 10 ** (-65 / 20), 10 ** (-20 / 20), 1.0])
        scaled = byte_magnitudes(spectrum)
        np.testing.assert_allclose(scaled, [0.0, 0.0, 127.0, 255.0, 255.0])

    def test_byte_magnitudes_empty_or_none(self):
        self.assertEqual(len(byte_magnitudes(None)), 0)
        self.assertEqual(len(byte_magnitudes(np.array([]))), 0)


if __name__ == "__main__":
    unittest.main()
