# start with the setup
import importlib.util
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import unittest
import numpy as np
import numpy.testing as npt

import asgd.transforms as T
import asgd.image_sampling as IS
import asgd.jacobian_statistics as JS
import asgd.gradient_sampler as GS
import asgd.parameter_estimation as PE
import asgd.example_generation as eg
import asgd.module_parameters as pars
import asgd.similarity_measures as SM

foundHTMLTestRunner = importlib.util.find_spec('HtmlTestRunner') is not None
if foundHTMLTestRunner:
    import HtmlTestRunner

# test it


class QuadraticCost(object):
    """f(mu) = 1/2 (mu-mu_opt)^T H (mu-mu_opt); does not depend on the samples"""

    def __init__(self, H, mu_opt):
        self.H = H
        self.mu_opt = mu_opt

    def get_value_and_derivative(self, parameters, samples):
        d = parameters - self.mu_opt
        return 0.5 * d @ self.H @ d, self.H @ d


class FixedSampler(object):

    def __init__(self, samples):
        self.samples = samples

    def get_samples(self):
        return self.samples


class Test_settings_record(unittest.TestCase):

    def setUp(self):
        self.settings = PE.SettingsRecord(a=2., A=10., alpha=0.602, fmax=1., fmin=-0.8, omega=0.1)

    def tearDown(self):
        pass

    def test_gain_strictly_decreasing(self):
        gains = np.array([self.settings.gain(k) for k in range(1000)])
        self.assertTrue(np.all(np.diff(gains) < 0.))
        npt.assert_almost_equal(gains[0], 2. / 11. ** 0.602)

    def test_gain_negative_iteration(self):
        with self.assertRaises(ValueError):
            self.settings.gain(-1)

    def test_sigmoid_bounds(self):
        s = self.settings.sigmoid(np.linspace(-3., 3., 101))
        self.assertTrue(np.all(s > self.settings.fmin))
        self.assertTrue(np.all(s < self.settings.fmax))
        self.assertTrue(np.all(np.diff(s) > 0.))

    def test_sigmoid_limits(self):
        self.assertEqual(self.settings.sigmoid(np.inf), self.settings.fmax)
        self.assertEqual(self.settings.sigmoid(-np.inf), self.settings.fmin)
        for t in [-1e300, -1e5, 1e5, 1e300]:
            s = self.settings.sigmoid(t)
            self.assertTrue(self.settings.fmin <= s <= self.settings.fmax)

    def test_sigmoid_at_zero(self):
        npt.assert_almost_equal(self.settings.sigmoid(0.), 0.1)

    def test_invalid_settings(self):
        with self.assertRaises(ValueError):
            PE.SettingsRecord(1., 10., 1., 0., -0.8, 0.1)
        with self.assertRaises(ValueError):
            PE.SettingsRecord(1., 10., 1., 1., 0.1, 0.1)
        with self.assertRaises(ValueError):
            PE.SettingsRecord(1., 10., 1., 1., -0.8, 0.)
        with self.assertRaises(ValueError):
            PE.SettingsRecord(1., -1., 1., 1., -0.8, 0.1)
        with self.assertRaises(ValueError):
            PE.SettingsRecord(np.nan, 10., 1., 1., -0.8, 0.1)

    def test_from_parameters(self):
        params = pars.ParameterDict(printSettings=False)
        opt = params['optimizer']
        opt['SP_a'] = ([100., 50.], 'gain numerator')
        settings = PE.SettingsRecord.from_parameters(opt, level=1, nr_of_resolutions=2)
        self.assertEqual(settings.a, 50.)
        self.assertEqual(settings.A, 20.)
        self.assertEqual(settings.fmin, -0.8)


class Test_parameter_estimator(unittest.TestCase):

    def setUp(self):
        np.random.seed(2019)
        self.default_settings = PE.SettingsRecord(400., 20., 1., 1., -0.8, 1e-8)
        self.estimator = PE.ParameterEstimator(self.default_settings, nr_of_parameters=6)

    def tearDown(self):
        pass

    def test_idempotent(self):
        s1 = self.estimator.estimate(3.2, 0.7, 12., 30., 50., 80., 1.)
        s2 = self.estimator.estimate(3.2, 0.7, 12., 30., 50., 80., 1.)
        self.assertEqual(s1, s2)

    def test_estimated_settings(self):
        gg, ee, TrC, TrCC, maxJJ, maxJCJ, delta = 3.2, 0.7, 12., 30., 50., 80., 1.
        s = self.estimator.estimate(gg, ee, TrC, TrCC, maxJJ, maxJCJ, delta)
        sigma1 = np.sqrt(gg / TrC)
        sigma3 = np.sqrt(ee / TrC)
        nf = sigma1 ** 2 / (sigma1 ** 2 + sigma3 ** 2 + 1e-14)
        self.assertEqual(s.alpha, 1.)
        self.assertEqual(s.fmax, 1.)
        self.assertEqual(s.A, 20.)
        npt.assert_almost_equal(s.fmin, -0.99 + 0.98 * nf)
        npt.assert_almost_equal(s.omega, 0.1 * sigma3 ** 2 * np.sqrt(TrCC) / ((sigma1 ** 2 + sigma3 ** 2) * TrC))
        # the first step is calibrated to the maximum step length (times the noise factor)
        npt.assert_almost_equal(s.gain(0) * s.sigmoid(0.) * sigma1 * np.sqrt(maxJCJ), delta * nf)

    def test_maximum_likelihood_sigma(self):
        sigma1, _ = self.estimator.compute_sigmas(12., 0., 3., used_maximum_likelihood=True)
        npt.assert_almost_equal(sigma1, np.sqrt(2.))

    def test_no_adaptive_step_sizes(self):
        estimator = PE.ParameterEstimator(self.default_settings, 6, use_adaptive_step_sizes=False)
        s = estimator.estimate(3.2, 0.7, 12., 30., 50., 80., 1.)
        sigma1 = np.sqrt(3.2 / 12.)
        nf = 3.2 / (3.2 + 0.7 + 12e-14)
        npt.assert_almost_equal(s.gain(0) * s.fmax * sigma1 * np.sqrt(80.), nf, decimal=6)

    def test_zero_gradient(self):
        s = self.estimator.estimate(0., 0., 12., 30., 50., 80., 1.)
        self.assertEqual(s.a, 0.)

    def test_fallback_for_degenerate_statistics(self):
        self.assertEqual(self.estimator.estimate(3.2, 0.7, 0., 30., 50., 80., 1.), self.default_settings)
        self.assertEqual(self.estimator.estimate(3.2, 0.7, 12., 30., 0., 80., 1.), self.default_settings)
        self.assertEqual(self.estimator.estimate(np.nan, 0.7, 12., 30., 50., 80., 1.), self.default_settings)
        self.assertEqual(self.estimator.estimate(3.2, np.inf, 12., 30., 50., 80., 1.), self.default_settings)

    def test_perturbation_sigma(self):
        npt.assert_almost_equal(PE.perturbation_sigma(2., 16.), 0.5)
        self.assertEqual(PE.perturbation_sigma(2., 0.), 0.)

    def test_first_step_matches_maximum_step_length_affine(self):
        # 2D affine transform, 5 gradient measurements, 1000 Jacobian samples, quadratic cost
        transform = T.AffineTransform(2, center=[5., 5.])
        P = transform.number_of_parameters
        rng = np.random.default_rng(7)
        points = rng.uniform(0., 10., size=(1000, 2))
        samples = IS.ImageSampleContainer(points, np.zeros(1000))
        delta = 0.5

        terms = JS.JacobianStatisticsEstimator(transform).estimate(samples)
        mu0 = transform.get_parameters()
        cost = QuadraticCost(np.diag(np.arange(1., P + 1.)), mu0 + 1.)
        sampler = FixedSampler(samples)
        sigma = PE.perturbation_sigma(delta, terms.maxJJ)
        statistics = GS.GradientSampler(cost, sampler, sampler, seed=11).sample(mu0, sigma, 5)
        self.assertEqual(statistics.ee, 0.)

        settings = PE.ParameterEstimator(self.default_settings, P).estimate(
            statistics.gg, statistics.ee, terms.TrC, terms.TrCC, terms.maxJJ, terms.maxJCJ, delta)
        sigma1, _ = PE.ParameterEstimator(self.default_settings, P).compute_sigmas(statistics.gg, statistics.ee, terms.TrC)
        predicted_step = settings.gain(0) * settings.sigmoid(0.) * sigma1 * np.sqrt(terms.maxJCJ)
        self.assertLess(abs(predicted_step - delta) / delta, 0.1)


class Test_gradient_sampler(unittest.TestCase):

    def setUp(self):
        np.random.seed(2019)
        params = pars.ParameterDict(printSettings=False)
        I0, I1, self.spacing = eg.CreateGaussianBlobs(2).create_image_pair([24, 24], params, shift=[1.5, -1.])
        self.transform = T.TranslationTransform(2)
        self.cost = SM.MeanSquaresMetric(I1, self.spacing, self.transform)
        self.grid_sampler = IS.ImageGridSampler(I0, self.spacing, number_of_samples=144)
        self.random_sampler = IS.ImageRandomSampler(I0, self.spacing, number_of_samples=50, seed=3)

    def tearDown(self):
        pass

    def test_default_number_of_measurements(self):
        self.assertEqual(GS.default_number_of_gradient_measurements(6), 5)
        self.assertEqual(GS.default_number_of_gradient_measurements(200), 2)
        self.assertEqual(GS.default_number_of_gradient_measurements(10000), 2)

    def test_zero_sigma_identical_samples(self):
        mu0 = np.array([0.3, -0.2])
        sampler = GS.GradientSampler(self.cost, self.grid_sampler, self.grid_sampler, seed=1)
        statistics = sampler.sample(mu0, 0., 3)
        _, g = self.cost.get_value_and_derivative(mu0, self.grid_sampler.get_samples())
        self.assertEqual(statistics.ee, 0.)
        npt.assert_almost_equal(statistics.gg, g @ g)
        self.assertFalse(statistics.used_maximum_likelihood)

    def test_stochastic_gradient_has_noise(self):
        sampler = GS.GradientSampler(self.cost, self.random_sampler, self.grid_sampler, seed=1)
        statistics = sampler.sample(np.zeros(2), 0.1, 4)
        self.assertGreater(statistics.ee, 0.)
        self.assertGreater(statistics.gg, 0.)

    def test_reproducible(self):
        s1 = GS.GradientSampler(self.cost, self.grid_sampler, self.grid_sampler, seed=5).sample(np.zeros(2), 0.2, 3)
        s2 = GS.GradientSampler(self.cost, self.grid_sampler, self.grid_sampler, seed=5).sample(np.zeros(2), 0.2, 3)
        self.assertEqual(s1, s2)

    def test_maximum_likelihood_with_identity_covariance(self):
        sampler = GS.GradientSampler(self.cost, self.grid_sampler, self.grid_sampler, seed=1)
        plain = sampler.sample(np.zeros(2), 0., 2)
        ml = sampler.sample(np.zeros(2), 0., 2, covariance=np.eye(2))
        npt.assert_almost_equal(ml.gg, plain.gg)
        self.assertTrue(ml.used_maximum_likelihood)

    def test_maximum_likelihood_singular_covariance(self):
        sampler = GS.GradientSampler(self.cost, self.grid_sampler, self.grid_sampler, seed=1)
        plain = sampler.sample(np.zeros(2), 0., 2)
        ml = sampler.sample(np.zeros(2), 0., 2, covariance=np.zeros((2, 2)))
        npt.assert_almost_equal(ml.gg, plain.gg)
        self.assertFalse(ml.used_maximum_likelihood)

    def test_scaled_gradients(self):
        scales = np.array([2., 4.])
        mu0 = np.array([0.3, -0.2])
        sampler = GS.GradientSampler(self.cost, self.grid_sampler, self.grid_sampler, scales=scales, seed=1)
        statistics = sampler.sample(mu0 * scales, 0., 1)
        _, g = self.cost.get_value_and_derivative(mu0, self.grid_sampler.get_samples())
        npt.assert_almost_equal(statistics.gg, np.sum((g / scales) ** 2))


if __name__ == '__main__':
    if foundHTMLTestRunner:
        unittest.main(testRunner=HtmlTestRunner.HTMLTestRunner(output='test_output'))
    else:
        unittest.main()
