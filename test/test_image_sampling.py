# start with the setup
import importlib.util
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import unittest
import numpy as np
import numpy.testing as npt

import asgd.image_sampling as IS
import asgd.utils as utils

foundHTMLTestRunner = importlib.util.find_spec('HtmlTestRunner') is not None
if foundHTMLTestRunner:
    import HtmlTestRunner

# test it


class Test_image_sampling(unittest.TestCase):

    def setUp(self):
        np.random.seed(2019)
        self.image = np.arange(20 * 30, dtype='float64').reshape(20, 30)
        self.spacing = np.array([0.5, 2.])
        self.origin = np.array([1., -1.])

    def tearDown(self):
        pass

    def test_identity_map(self):
        id = utils.identity_map([3, 4], [0.5, 2.], dtype='float64')
        self.assertEqual(id.shape, (2, 3, 4))
        npt.assert_almost_equal(id[0, :, 0], [0., 0.5, 1.])
        npt.assert_almost_equal(id[1, 0, :], [0., 2., 4., 6.])

    def test_full_sampler(self):
        samples = IS.ImageFullSampler(self.image, self.spacing, self.origin).get_samples()
        self.assertEqual(len(samples), 600)
        self.assertEqual(samples.dim, 2)
        # value at voxel (i,j) is 30*i+j
        voxel = np.round((samples.points - self.origin) / self.spacing).astype('int64')
        npt.assert_almost_equal(samples.values, 30 * voxel[:, 0] + voxel[:, 1])

    def test_full_sampler_with_mask(self):
        mask = np.zeros_like(self.image, dtype=bool)
        mask[2:5, 3:6] = True
        samples = IS.ImageFullSampler(self.image, self.spacing, mask=mask).get_samples()
        self.assertEqual(len(samples), 9)

    def test_grid_sampler_number_of_samples(self):
        sampler = IS.ImageGridSampler(self.image, self.spacing, number_of_samples=150)
        samples = sampler.get_samples()
        # grid spacing floor(sqrt(600/150)) = 2
        self.assertEqual(len(samples), 150)

    def test_grid_sampler_set_number_of_samples(self):
        sampler = IS.ImageGridSampler(self.image, self.spacing, number_of_samples=600)
        self.assertEqual(len(sampler.get_samples()), 600)
        sampler.set_number_of_samples(150)
        self.assertEqual(len(sampler.get_samples()), 150)
        sampler.set_number_of_samples(None)
        self.assertEqual(len(sampler.get_samples()), 600)

    def test_grid_sampler_too_small_image(self):
        sampler = IS.ImageGridSampler(self.image, self.spacing, number_of_samples=1000)
        self.assertEqual(len(sampler.get_samples()), 600)

    def test_grid_sampler_is_deterministic(self):
        sampler = IS.ImageGridSampler(self.image, self.spacing, number_of_samples=100)
        npt.assert_equal(sampler.get_samples().points, sampler.get_samples().points)

    def test_random_sampler_new_samples(self):
        sampler = IS.ImageRandomSampler(self.image, self.spacing, number_of_samples=50, seed=1)
        s1 = sampler.get_samples()
        s2 = sampler.get_samples()
        self.assertEqual(len(s1), 50)
        self.assertFalse(np.array_equal(s1.points, s2.points))

    def test_random_sampler_same_samples(self):
        sampler = IS.ImageRandomSampler(self.image, self.spacing, number_of_samples=50, seed=1)
        sampler.set_new_samples_every_call(False)
        npt.assert_equal(sampler.get_samples().points, sampler.get_samples().points)

    def test_random_sampler_is_reproducible(self):
        s1 = IS.ImageRandomSampler(self.image, self.spacing, number_of_samples=50, seed=3).get_samples()
        s2 = IS.ImageRandomSampler(self.image, self.spacing, number_of_samples=50, seed=3).get_samples()
        npt.assert_equal(s1.values, s2.values)

    def test_random_coordinate_sampler(self):
        sampler = IS.ImageRandomCoordinateSampler(self.image, self.spacing, number_of_samples=40, seed=5)
        samples = sampler.get_samples()
        voxel = samples.points / self.spacing
        # the image is linear in the voxel coordinates, so is its linear interpolation
        npt.assert_almost_equal(samples.values, 30 * voxel[:, 0] + voxel[:, 1])

    def test_wrong_spacing(self):
        with self.assertRaises(ValueError):
            IS.ImageFullSampler(self.image, [1., 1., 1.])


if __name__ == '__main__':
    if foundHTMLTestRunner:
        unittest.main(testRunner=HtmlTestRunner.HTMLTestRunner(output='test_output'))
    else:
        unittest.main()
