"""
This package implements the multi-resolution adaptive stochastic gradient descent optimizer. For every
resolution level the gain and step multiplier settings are either taken from the parameter structure
or estimated automatically from gradient and Jacobian statistics; the iterations then follow
:class:`~asgd.custom_optimizers.AdaptiveStepSGD`.

A typical use is

.. code::

    opt = AdaptiveStochasticGradientDescent(params)
    opt.set_cost_function(MeanSquaresMetric(I1, spacing, transform))
    opt.set_fixed_image(I0, spacing)
    mu = opt.optimize()
"""
import os
import time
from enum import Enum

import numpy as np
import torch
from termcolor import cprint

from . import config_parser
from . import fileio
from . import utils
from .custom_optimizers import AdaptiveStepSGD
from .data_wrapper import MyTensor
from .gradient_sampler import GradientSampler
from .image_sampling import ImageGridSampler, ImageRandomSampler
from .jacobian_statistics import JacobianStatisticsEstimator
from .parameter_estimation import ParameterEstimator, SettingsRecord, perturbation_sigma


class OptimizerState(Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    CONVERGED = 'converged'
    MAX_ITERATIONS_REACHED = 'max_iterations_reached'
    STOPPED = 'stopped'


class AdaptiveStochasticGradientDescent(object):
    """
    Multi-resolution adaptive stochastic gradient descent with automatic parameter estimation.
    """

    def __init__(self, params=None):
        """
        Constructor.

        :param params: ParameterDict() instance holding the optimizer settings (category 'optimizer');
            if None the default settings of the config_parser are used
        """
        if params is None:
            params = config_parser.get_optimizer_settings()
        self.params = params
        """general parameters"""
        self.params[('optimizer', {}, 'settings of the adaptive stochastic gradient descent optimizer')]

        self.cost_function = None
        """provides get_value_and_derivative(parameters, samples)"""
        self.transform = None
        """transform whose parameters are optimized"""
        self.image_sampler = None
        """stochastic sampler used for the iterations and the approximate gradients"""
        self.fixed_image = None
        self.fixed_spacing = None
        self.fixed_origin = None
        self.fixed_mask = None
        self.moving_spacing = None

        self.nr_of_resolutions = None
        self.current_level = None
        """current resolution level"""
        self.current_iteration = 0
        """iterations performed in the current resolution"""
        self.state = OptimizerState.IDLE
        """state of the optimizer"""

        self.settings_vector = []
        """settings used in each started resolution, in order"""
        self.scales = None
        """parameter scales"""
        self.scaled_parameters = None
        self.optimizer_instance = None
        self.jacobian_estimator = None
        self.rng = None

        self.last_metric_value = None
        self.last_covariance_snapshot = None
        """covariance snapshot of the last automatic parameter estimation (if it was computed)"""
        self.iteration_callbacks = []

        self.show_iteration_output = True
        self.history = dict()

        self._resolution_started = False

    def set_cost_function(self, cost_function, transform=None):
        """
        :param cost_function: cost function to be minimized
        :param transform: transform the cost function depends on; defaults to cost_function.transform
        """
        self.cost_function = cost_function
        if transform is None:
            transform = getattr(cost_function, 'transform', None)
        self.transform = transform

    def set_fixed_image(self, image, spacing, origin=None, mask=None):
        """
        Sets the fixed image from which the grid samples are drawn

        :param image: fixed image (spatial dimensions only)
        :param spacing: image spacing
        :param origin: physical position of the first voxel
        :param mask: optional sampling mask
        """
        self.fixed_image = image
        self.fixed_spacing = np.asarray(spacing, dtype='float64')
        self.fixed_origin = origin
        self.fixed_mask = mask

    def set_moving_image_spacing(self, spacing):
        """
        Sets the spacing of the moving image; used to determine the default maximum step length

        :param spacing: moving image spacing
        """
        self.moving_spacing = np.asarray(spacing, dtype='float64')

    def set_image_sampler(self, sampler):
        """
        Sets the stochastic sampler; if none is set, a random sampler over the fixed image is created

        :param sampler: sampler providing get_samples()
        """
        self.image_sampler = sampler

    def add_iteration_callback(self, callback):
        """
        Adds a function which is called after every iteration with the optimizer as argument, e.g., to
        monitor the progress or to stop the optimization via stop_optimization

        :param callback: function
        """
        self.iteration_callbacks.append(callback)

    def turn_iteration_output_on(self):
        self.show_iteration_output = True

    def turn_iteration_output_off(self):
        self.show_iteration_output = False

    def get_history(self):
        """
        Returns the optimization history as a dictionary. Keeps track of metric values, iteration counts,
        gains, step multipliers, times, and resolution levels.

        :return: history dictionary
        """
        return self.history

    def _add_to_history(self, key, value):
        """
        Adds an element to the optimizer history

        :param key: history key
        :param value: value that is associated with it
        :return: n/a
        """
        if key not in self.history:
            self.history[key] = [value]
        else:
            self.history[key].append(value)

    def get_settings_vector(self):
        return list(self.settings_vector)

    def get_state(self):
        return self.state

    def get_current_parameters(self):
        """
        :return: current transform parameters (unscaled)
        """
        if self.scaled_parameters is None:
            return self.transform.get_parameters()
        return utils.t2np(self.scaled_parameters) / self.scales

    def get_covariance_snapshot(self):
        return self.last_covariance_snapshot

    def stop_optimization(self):
        """
        Stops the iterations of the current resolution after the current one (state Converged)
        """
        if self.state == OptimizerState.RUNNING:
            self.state = OptimizerState.CONVERGED

    def write_parameters_to_settings(self):
        """
        Writes the settings used in all resolutions back into the parameter structure (one value per
        resolution), so that they can be saved with write_JSON
        """
        if len(self.settings_vector) == 0:
            return
        opt = self.params['optimizer']
        for name, field in fileio.settings_parameter_names:
            values = [getattr(s, field) for s in self.settings_vector]
            if len(values) == 1:
                opt[name] = (values[0], 'value used by the optimizer')
            else:
                opt[name] = (values, 'values used by the optimizer, one per resolution')

    def _get_option(self, key, default, comment):
        return self.params['optimizer'].get_resolution_value(key, self.current_level, self.nr_of_resolutions,
                                                              default, comment)

    def _get_scales(self):
        opt = self.params['optimizer']
        P = self.transform.number_of_parameters
        if not opt.has_key(['Scales']):
            return np.ones(P)
        scales = np.asarray(opt['Scales'], dtype='float64').reshape(-1)
        if len(scales) == 1:
            scales = np.tile(scales, P)
        elif len(scales) != P:
            raise ValueError('Scales need 1 or ' + str(P) + ' entries, but got ' + str(len(scales)))
        if not np.all(np.isfinite(scales)) or (scales <= 0.).any():
            raise ValueError('Scales need to be positive')
        return scales

    def before_registration(self):
        """
        Checks the configuration and resets the optimizer before the first resolution
        """
        if self.cost_function is None or self.transform is None:
            raise ValueError('Cost function and transform need to be set first')
        if self.fixed_image is None:
            raise ValueError('The fixed image needs to be set first')

        opt = self.params['optimizer']
        self.nr_of_resolutions = int(opt[('NumberOfResolutions', 1, 'number of resolution levels')])
        if self.nr_of_resolutions < 1:
            raise ValueError('At least one resolution level is required')

        self.settings_vector = []
        self.history = dict()
        self.current_level = None
        self.state = OptimizerState.IDLE
        self.last_covariance_snapshot = None

        self.scales = self._get_scales()
        self.rng = np.random.default_rng(opt[('RandomSeed', 2019, 'seed of the perturbations drawn during parameter estimation')])
        self.jacobian_estimator = JacobianStatisticsEstimator(self.transform, self.scales)

        if self.image_sampler is None:
            nr_of_samples = opt[('NumberOfSpatialSamples', 2000, 'number of random samples drawn per iteration if no sampler is given')]
            self.image_sampler = ImageRandomSampler(self.fixed_image, self.fixed_spacing, self.fixed_origin,
                                                    self.fixed_mask, number_of_samples=nr_of_samples, seed=self.rng)

        print('INFO: optimizing ' + str(self.transform.number_of_parameters) + ' parameters in ' +
              str(self.nr_of_resolutions) + ' resolution(s); Jacobian statistics via ' + self.jacobian_estimator.method.value)

    def before_each_resolution(self, level=None):
        """
        Reads the settings of a resolution level

        :param level: resolution level; defaults to the next one
        """
        if self.nr_of_resolutions is None:
            raise ValueError('before_registration needs to be called first')
        if level is None:
            level = 0 if self.current_level is None else self.current_level + 1
        if level < 0 or level >= self.nr_of_resolutions:
            raise ValueError('Resolution level ' + str(level) + ' outside of [0,' + str(self.nr_of_resolutions) + ')')
        self.current_level = level
        self.current_iteration = 0
        self.state = OptimizerState.IDLE
        self._resolution_started = False

        self.max_iterations = int(self._get_option('MaximumNumberOfIterations', 500, 'maximum number of iterations in each resolution'))
        if self.max_iterations < 0:
            raise ValueError('MaximumNumberOfIterations needs to be at least 0')
        self.automatic_estimation = self._get_option('AutomaticParameterEstimation', True, 'estimate the gain settings at the start of each resolution')
        self.use_adaptive_step_sizes = self._get_option('UseAdaptiveStepSizes', True, 'adapt the step size to the consistency of the search directions')
        self.initial_time = float(self._get_option('SigmoidInitialTime', 0.0, 'initial input of the step multiplier sigmoid'))
        if self.initial_time < 0.:
            raise ValueError('SigmoidInitialTime needs to be at least 0, got ' + str(self.initial_time))
        self.use_maximum_likelihood = self._get_option('UseMaximumLikelihoodMethod', False, 'use g^T C^-1 g as gradient magnitude')
        self.save_covariance = self._get_option('SaveCovarianceMatrix', False, 'write the Jacobian covariance matrix to file')
        self.nr_of_samples_for_exact_gradient = int(self._get_option('NumberOfSamplesForExactGradient', 100000, 'number of grid samples used for the exact gradient'))
        self.nr_of_gradient_measurements = self._get_option('NumberOfGradientMeasurements', None, None)
        self.nr_of_jacobian_measurements = self._get_option('NumberOfJacobianMeasurements', None, None)

        self.maximum_step_length = self._get_option('MaximumStepLength', None, None)
        if self.maximum_step_length is None:
            moving_spacing = self.fixed_spacing if self.moving_spacing is None else self.moving_spacing
            self.maximum_step_length = utils.mean_spacing(self.fixed_spacing, moving_spacing)
        if not self.maximum_step_length > 0.:
            raise ValueError('MaximumStepLength needs to be larger than 0, got ' + str(self.maximum_step_length))

        self.default_settings = SettingsRecord.from_parameters(self.params['optimizer'], level, self.nr_of_resolutions)

        new_samples = self._get_option('NewSamplesEveryIteration', True, 'draw new samples every iteration')
        if hasattr(self.image_sampler, 'set_new_samples_every_call'):
            self.image_sampler.set_new_samples_every_call(new_samples)

        print('INFO: starting resolution ' + str(level))

    def automatic_parameter_estimation(self, scaled_parameters):
        """
        Estimates the settings of the current resolution from gradient and Jacobian statistics at the
        current parameters

        :param scaled_parameters: current parameters multiplied by the scales
        :return: SettingsRecord
        """
        P = self.transform.number_of_parameters
        nr_of_jacobian_measurements = self.nr_of_jacobian_measurements
        if nr_of_jacobian_measurements is None:
            nr_of_jacobian_measurements = max(1000, 3 * P)

        keep_covariance = self.use_maximum_likelihood or self.save_covariance

        start = time.time()
        jacobian_samples = ImageGridSampler(self.fixed_image, self.fixed_spacing, self.fixed_origin, self.fixed_mask,
                                            number_of_samples=nr_of_jacobian_measurements).get_samples()
        terms = self.jacobian_estimator.estimate(jacobian_samples, keep_covariance=keep_covariance)
        if self.show_iteration_output:
            cprint('-->Computing the Jacobian terms took {:.5f}[s]'.format(time.time() - start), 'green')
            print('INFO: TrC={:.6g}, TrCC={:.6g}, maxJJ={:.6g}, maxJCJ={:.6g}'.format(terms.TrC, terms.TrCC, terms.maxJJ, terms.maxJCJ))

        start = time.time()
        exact_sampler = ImageGridSampler(self.fixed_image, self.fixed_spacing, self.fixed_origin, self.fixed_mask,
                                         number_of_samples=self.nr_of_samples_for_exact_gradient)
        gradient_sampler = GradientSampler(self.cost_function, self.image_sampler, exact_sampler, self.scales, seed=self.rng)
        sigma = perturbation_sigma(self.maximum_step_length, terms.maxJJ)
        statistics = gradient_sampler.sample(scaled_parameters, sigma, self.nr_of_gradient_measurements,
                                             covariance=terms.covariance if self.use_maximum_likelihood else None)
        if self.show_iteration_output:
            cprint('-->Sampling the gradients took {:.5f}[s]'.format(time.time() - start), 'green')
            print('INFO: gg={:.6g}, ee={:.6g}, perturbation sigma={:.6g}'.format(statistics.gg, statistics.ee, sigma))

        estimator = ParameterEstimator(self.default_settings, P, self.use_adaptive_step_sizes, self.initial_time)
        settings = estimator.estimate(statistics.gg, statistics.ee, terms.TrC, terms.TrCC, terms.maxJJ, terms.maxJCJ,
                                      self.maximum_step_length, statistics.used_maximum_likelihood)

        if keep_covariance:
            if terms.TrC > 0.:
                sigma1, sigma3 = estimator.compute_sigmas(statistics.gg, statistics.ee, terms.TrC, statistics.used_maximum_likelihood)
            else:
                sigma1, sigma3 = 0., 0.
            self.last_covariance_snapshot = fileio.CovarianceSnapshot(sigma1, sigma3, terms.covariance)
            if self.save_covariance:
                output_directory = self.params['optimizer'][('OutputDirectory', '.', 'directory diagnostic files are written to')]
                if not os.path.exists(output_directory):
                    os.makedirs(output_directory)
                filename = fileio.get_covariance_matrix_filename(output_directory, self.current_level)
                print('INFO: writing covariance matrix to ' + filename)
                fileio.write_covariance_matrix(filename, self.last_covariance_snapshot)

        return settings

    def _closure(self):
        parameters = utils.t2np(self.scaled_parameters) / self.scales
        value, derivative = self.cost_function.get_value_and_derivative(parameters, self.image_sampler.get_samples())
        self.scaled_parameters.grad = MyTensor(np.asarray(derivative, dtype='float64') / self.scales)
        self.last_metric_value = value
        return value

    def start_optimization(self):
        """
        Estimates (or reads) the settings of the current resolution and iterates until the maximum number of
        iterations is reached or the optimization is stopped
        """
        if self.current_level is None:
            raise ValueError('before_each_resolution needs to be called first')
        if self._resolution_started:
            raise ValueError('Resolution ' + str(self.current_level) + ' was already optimized')
        self._resolution_started = True

        initial_parameters = self.transform.get_parameters()
        scaled_parameters = initial_parameters * self.scales

        if self.automatic_estimation:
            settings = self.automatic_parameter_estimation(scaled_parameters)
            # the gradient measurements leave the transform at a perturbed position
            self.transform.set_parameters(initial_parameters)
        else:
            settings = self.default_settings
        self.settings_vector.append(settings)
        print('INFO: settings: a={:.6g}, A={:.6g}, alpha={:.6g}, fmax={:.6g}, fmin={:.6g}, omega={:.6g}'.format(*settings))

        self.scaled_parameters = torch.nn.Parameter(MyTensor(scaled_parameters))
        self.optimizer_instance = AdaptiveStepSGD([self.scaled_parameters], settings,
                                                  use_adaptive_step_sizes=self.use_adaptive_step_sizes,
                                                  initial_time=self.initial_time)

        start = time.time()
        self.state = OptimizerState.RUNNING
        if self.max_iterations == 0:
            self.state = OptimizerState.MAX_ITERATIONS_REACHED

        while self.state == OptimizerState.RUNNING:
            value = self.optimizer_instance.step(self._closure)

            gain = self.optimizer_instance.get_gain()
            multiplier = self.optimizer_instance.get_step_multiplier()
            t = self.optimizer_instance.get_time()

            self._add_to_history('iter', self.current_iteration)
            self._add_to_history('metric', value)
            self._add_to_history('gain', gain)
            self._add_to_history('step_multiplier', multiplier)
            self._add_to_history('time', t)
            self._add_to_history('resolution', self.current_level)

            if self.show_iteration_output:
                cprint('{iter:5d}-R{level}: metric={metric:08.6f} | gain={gain:.4e} | step multiplier={mult:+.4f} | time={t:.4f}'
                       .format(iter=self.current_iteration, level=self.current_level, metric=utils.get_scalar(value),
                               gain=gain, mult=multiplier, t=t), 'red')

            self.current_iteration += 1

            for callback in self.iteration_callbacks:
                callback(self)

            if self.state == OptimizerState.RUNNING and self.current_iteration >= self.max_iterations:
                self.state = OptimizerState.MAX_ITERATIONS_REACHED

        if self.current_iteration > 0:
            self.transform.set_parameters(self.get_current_parameters())

        if self.show_iteration_output:
            cprint('-->Elapsed time {:.5f}[s]'.format(time.time() - start), 'green')

    def after_each_resolution(self):
        """
        Reports the stopping condition of the current resolution
        """
        if self.state == OptimizerState.CONVERGED:
            print('INFO: resolution ' + str(self.current_level) + ' stopped after ' + str(self.current_iteration) + ' iterations on request')
        elif self.state == OptimizerState.MAX_ITERATIONS_REACHED:
            print('INFO: resolution ' + str(self.current_level) + ' reached the maximum number of iterations (' + str(self.max_iterations) + ')')
        self.state = OptimizerState.STOPPED

    def after_registration(self):
        """
        Reports the settings used in all resolutions
        """
        print('INFO: settings used in all resolutions:')
        print(fileio.settings_vector_to_string(self.settings_vector), end='')
        if self.last_metric_value is not None:
            print('INFO: final metric value = ' + str(self.last_metric_value))

    def optimize(self):
        """
        Performs the optimization over all resolution levels

        :return: optimized transform parameters
        """
        self.before_registration()
        for level in range(self.nr_of_resolutions):
            self.before_each_resolution(level)
            self.start_optimization()
            self.after_each_resolution()
        self.after_registration()
        return self.transform.get_parameters()
