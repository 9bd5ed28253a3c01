# Runs the adaptive stochastic gradient descent optimizer on synthetic registration problems

# start with the setup
import importlib.util
import os
import sys
import tempfile

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import matplotlib
matplotlib.use('Agg')

import unittest
import torch
import numpy as np
import numpy.testing as npt
import random

import asgd.example_generation as eg
import asgd.module_parameters as pars
import asgd.multiscale_optimizer as MO
import asgd.parameter_estimation as PE
import asgd.similarity_measures as SM
import asgd.transforms as T
import asgd.fileio as FIO
import asgd.visualize_optimization_results as VO

foundHTMLTestRunner = importlib.util.find_spec('HtmlTestRunner') is not None
if foundHTMLTestRunner:
    import HtmlTestRunner

# test it


class Test_multiscale_optimizer(unittest.TestCase):

    def createImage(self, ex_len=32, shift=(2., -1.5)):
        dim = 2
        szEx = np.tile(ex_len, dim)
        self.I0, self.I1, self.spacing = eg.CreateGaussianBlobs(dim).create_image_pair(szEx, self.params, shift=shift)
        self.sz = np.array(self.I0.shape)

    def createOptimizer(self, transform):
        self.cost = SM.MeanSquaresMetric(self.I1, self.spacing, transform)
        opt = MO.AdaptiveStochasticGradientDescent(self.params)
        opt.set_cost_function(self.cost)
        opt.set_fixed_image(self.I0, self.spacing)
        opt.turn_iteration_output_off()
        return opt

    def setUp(self):
        torch.manual_seed(2019)
        np.random.seed(2019)
        random.seed(2019)

        self.params = pars.ParameterDict(printSettings=False)
        opt = self.params['optimizer']
        opt['MaximumNumberOfIterations'] = (200, 'maximum number of iterations')
        opt['NumberOfSpatialSamples'] = (500, 'random samples per iteration')
        opt['RandomSeed'] = (2019, 'seed')
        self.createImage()

    def tearDown(self):
        pass

    def test_translation_registration(self):
        transform = T.TranslationTransform(2)
        opt = self.createOptimizer(transform)
        mu = opt.optimize()

        npt.assert_allclose(mu, [2., -1.5], atol=0.2)
        self.assertEqual(opt.get_state(), MO.OptimizerState.STOPPED)
        self.assertEqual(len(opt.get_settings_vector()), 1)
        history = opt.get_history()
        self.assertEqual(len(history['iter']), 200)
        self.assertLess(history['metric'][-1], history['metric'][0])
        self.assertTrue(np.all(np.diff(history['gain']) < 0.))

    def test_registration_is_reproducible(self):
        mu1 = self.createOptimizer(T.TranslationTransform(2)).optimize()
        mu2 = self.createOptimizer(T.TranslationTransform(2)).optimize()
        npt.assert_equal(mu1, mu2)

    def test_affine_registration(self):
        self.params['optimizer']['MaximumNumberOfIterations'] = (100, 'maximum number of iterations')
        self.params['optimizer']['Scales'] = ([10., 10., 10., 10., 1., 1.], 'parameter scales')
        transform = T.AffineTransform.from_image_geometry(self.sz, self.spacing)
        opt = self.createOptimizer(transform)
        mu = opt.optimize()
        history = opt.get_history()
        self.assertLess(history['metric'][-1], 0.5 * history['metric'][0])
        npt.assert_allclose(mu[4:], [2., -1.5], atol=0.75)

    def test_bspline_registration(self):
        self.params['optimizer']['MaximumNumberOfIterations'] = (30, 'maximum number of iterations')
        self.params['optimizer']['NumberOfSpatialSamples'] = (200, 'random samples per iteration')
        transform = T.BSplineTransform.from_image_geometry(self.sz, self.spacing, 10.)
        opt = self.createOptimizer(transform)
        opt.optimize()
        history = opt.get_history()
        self.assertEqual(len(history['metric']), 30)
        self.assertLess(np.mean(history['metric'][-5:]), history['metric'][0])

    def test_zero_iterations(self):
        self.params['optimizer']['MaximumNumberOfIterations'] = (0, 'maximum number of iterations')
        transform = T.TranslationTransform(2)
        transform.set_parameters([0.3, 0.1])
        opt = self.createOptimizer(transform)
        opt.before_registration()
        opt.before_each_resolution()
        opt.start_optimization()
        self.assertEqual(opt.get_state(), MO.OptimizerState.MAX_ITERATIONS_REACHED)
        npt.assert_equal(transform.get_parameters(), [0.3, 0.1])
        self.assertEqual(len(opt.get_settings_vector()), 1)
        opt.after_each_resolution()
        self.assertEqual(opt.get_state(), MO.OptimizerState.STOPPED)

    def test_stop_from_callback(self):
        def stop_after_five(optimizer):
            if optimizer.current_iteration >= 5:
                optimizer.stop_optimization()

        opt = self.createOptimizer(T.TranslationTransform(2))
        opt.add_iteration_callback(stop_after_five)
        opt.before_registration()
        opt.before_each_resolution()
        opt.start_optimization()
        self.assertEqual(opt.get_state(), MO.OptimizerState.CONVERGED)
        self.assertEqual(len(opt.get_history()['iter']), 5)

    def test_multiple_resolutions(self):
        opt_params = self.params['optimizer']
        opt_params['NumberOfResolutions'] = (2, 'number of resolutions')
        opt_params['MaximumNumberOfIterations'] = ([5, 3], 'maximum number of iterations')
        opt = self.createOptimizer(T.TranslationTransform(2))
        opt.optimize()
        history = opt.get_history()
        self.assertEqual(history['resolution'], [0] * 5 + [1] * 3)
        self.assertEqual(history['iter'], [0, 1, 2, 3, 4, 0, 1, 2])
        self.assertEqual(len(opt.get_settings_vector()), 2)

        opt.write_parameters_to_settings()
        self.assertEqual(len(self.params['optimizer']['SP_a']), 2)
        self.assertEqual(self.params['optimizer']['SP_a'][1], opt.get_settings_vector()[1].a)

    def test_user_settings(self):
        opt_params = self.params['optimizer']
        opt_params['AutomaticParameterEstimation'] = (False, 'use the given settings')
        opt_params['MaximumNumberOfIterations'] = (3, 'maximum number of iterations')
        opt_params['SP_a'] = (0.5, 'gain numerator')
        opt = self.createOptimizer(T.TranslationTransform(2))
        opt.optimize()
        settings = opt.get_settings_vector()[0]
        self.assertEqual(settings, PE.SettingsRecord(0.5, 20., 1., 1., -0.8, 1e-8))

    def test_wrong_number_of_scales(self):
        self.params['optimizer']['Scales'] = ([1., 2., 3.], 'parameter scales')
        opt = self.createOptimizer(T.TranslationTransform(2))
        with self.assertRaises(ValueError):
            opt.before_registration()

    def test_wrong_number_of_resolution_values(self):
        opt_params = self.params['optimizer']
        opt_params['NumberOfResolutions'] = (2, 'number of resolutions')
        opt_params['MaximumNumberOfIterations'] = ([5, 3, 1], 'maximum number of iterations')
        opt = self.createOptimizer(T.TranslationTransform(2))
        with self.assertRaises(ValueError):
            opt.optimize()

    def test_missing_cost_function(self):
        opt = MO.AdaptiveStochasticGradientDescent(self.params)
        opt.set_fixed_image(self.I0, self.spacing)
        with self.assertRaises(ValueError):
            opt.optimize()

    def test_save_covariance_matrix(self):
        with tempfile.TemporaryDirectory() as d:
            opt_params = self.params['optimizer']
            opt_params['SaveCovarianceMatrix'] = (True, 'write covariance')
            opt_params['OutputDirectory'] = (d, 'output directory')
            opt_params['MaximumNumberOfIterations'] = (2, 'maximum number of iterations')
            opt = self.createOptimizer(T.TranslationTransform(2))
            opt.optimize()
            snapshot = FIO.read_covariance_matrix(os.path.join(d, 'CovarianceMatrix.0.txt'))
        npt.assert_almost_equal(snapshot.covariance, np.eye(2))
        self.assertGreater(snapshot.sigma1, 0.)

    def test_maximum_likelihood(self):
        opt_params = self.params['optimizer']
        opt_params['UseMaximumLikelihoodMethod'] = (True, 'maximum likelihood')
        opt_params['MaximumNumberOfIterations'] = (20, 'maximum number of iterations')
        opt = self.createOptimizer(T.TranslationTransform(2))
        opt.optimize()
        self.assertIsNotNone(opt.get_covariance_snapshot())
        self.assertGreater(opt.get_settings_vector()[0].a, 0.)

    def test_plot_history(self):
        self.params['optimizer']['MaximumNumberOfIterations'] = (10, 'maximum number of iterations')
        opt = self.createOptimizer(T.TranslationTransform(2))
        opt.optimize()
        with tempfile.TemporaryDirectory() as d:
            filename = os.path.join(d, 'history.png')
            fig = VO.plot_optimization_history(opt.get_history(), filename=filename)
            self.assertTrue(os.path.exists(filename))
        self.assertEqual(len(fig.axes), 3)


if __name__ == '__main__':
    if foundHTMLTestRunner:
        unittest.main(testRunner=HtmlTestRunner.HTMLTestRunner(output='test_output'))
    else:
        unittest.main()
