"""
Monte-Carlo measurement of gradient magnitudes around the current parameters. For randomly perturbed
parameter vectors the exact gradient (evaluated on a fixed, large grid sample set) and the approximate
gradient (evaluated on a small stochastic sample set) are computed; their mean squared magnitude and
the mean squared difference between them characterize the signal and noise of the stochastic gradient.

All parameters and gradients handled here live in the scaled parameter space (parameters multiplied,
gradients divided by the parameter scales).
"""
from collections import namedtuple

import numpy as np

GradientStatistics = namedtuple('GradientStatistics', ['gg', 'ee', 'used_maximum_likelihood'])
"""
gg: mean squared magnitude of the exact gradient; ee: mean squared approximation error;
used_maximum_likelihood: True if every measurement of gg used the Mahalanobis norm
"""


def default_number_of_gradient_measurements(nr_of_parameters):
    """
    Number of perturbations drawn if none is configured; fewer for problems with many parameters.

    :param nr_of_parameters: number of transform parameters
    :return: number of measurements
    """
    return max(2, min(5, 500 // max(1, nr_of_parameters)))


class GradientSampler(object):
    """
    Draws perturbed parameters and measures exact and approximate gradients there.
    """

    def __init__(self, cost_function, stochastic_sampler, exact_sampler, scales=None, seed=None):
        """
        :param cost_function: provides get_value_and_derivative(parameters, samples)
        :param stochastic_sampler: sampler for the approximate gradient; queried once per measurement
        :param exact_sampler: deterministic sampler for the exact gradient
        :param scales: parameter scales (None: unscaled)
        :param seed: seed of the perturbations; alternatively a numpy Generator which is used as is
        """
        self.cost_function = cost_function
        self.stochastic_sampler = stochastic_sampler
        self.exact_sampler = exact_sampler
        self.scales = None if scales is None else np.asarray(scales, dtype='float64').reshape(-1)
        if isinstance(seed, np.random.Generator):
            self.rng = seed
        else:
            self.rng = np.random.default_rng(seed)

    def _scaled_gradient(self, scaled_parameters, samples):
        if self.scales is None:
            _, gradient = self.cost_function.get_value_and_derivative(scaled_parameters, samples)
            return np.asarray(gradient, dtype='float64').reshape(-1)
        _, gradient = self.cost_function.get_value_and_derivative(scaled_parameters / self.scales, samples)
        return np.asarray(gradient, dtype='float64').reshape(-1) / self.scales

    @staticmethod
    def _is_ill_conditioned(covariance):
        with np.errstate(divide='ignore', invalid='ignore'):
            condition_number = np.linalg.cond(covariance)
        return not np.isfinite(condition_number) or condition_number > 1. / np.finfo('float64').eps

    def sample(self, mu0, perturbation_sigma, number_of_measurements=None, covariance=None):
        """
        Measures the gradient statistics around mu0

        :param mu0: current (scaled) parameters
        :param perturbation_sigma: standard deviation of the component-wise Gaussian perturbations
        :param number_of_measurements: number of perturbations; defaults to
            :func:`default_number_of_gradient_measurements`
        :param covariance: if given, gg is measured in the Mahalanobis norm g^T C^-1 g
        :return: GradientStatistics
        """
        mu0 = np.asarray(mu0, dtype='float64').reshape(-1)
        P = len(mu0)
        if number_of_measurements is None:
            number_of_measurements = default_number_of_gradient_measurements(P)
        if number_of_measurements < 1:
            raise ValueError('At least one gradient measurement is required')
        if perturbation_sigma < 0 or not np.isfinite(perturbation_sigma):
            raise ValueError('The perturbation sigma needs to be a finite non-negative number')

        ill_conditioned = False
        if covariance is not None:
            covariance = np.asarray(covariance, dtype='float64')
            if covariance.shape != (P, P):
                raise ValueError('Covariance needs to be of size ' + str(P) + 'x' + str(P))
            ill_conditioned = self._is_ill_conditioned(covariance)
            if ill_conditioned:
                print('WARNING: covariance matrix is singular or ill-conditioned; using g^T g instead of g^T C^-1 g')

        exact_samples = self.exact_sampler.get_samples()

        gg = 0.
        ee = 0.
        all_maximum_likelihood = covariance is not None
        for n in range(number_of_measurements):
            mu = mu0 + perturbation_sigma * self.rng.standard_normal(P)

            exact_gradient = self._scaled_gradient(mu, exact_samples)
            approximate_gradient = self._scaled_gradient(mu, self.stochastic_sampler.get_samples())

            if covariance is not None and not ill_conditioned:
                try:
                    gg += float(exact_gradient @ np.linalg.solve(covariance, exact_gradient))
                except np.linalg.LinAlgError:
                    gg += float(exact_gradient @ exact_gradient)
                    all_maximum_likelihood = False
            else:
                gg += float(exact_gradient @ exact_gradient)
                all_maximum_likelihood = False

            difference = exact_gradient - approximate_gradient
            ee += float(difference @ difference)

        return GradientStatistics(gg / number_of_measurements, ee / number_of_measurements, all_maximum_likelihood)
