"""
Settings of the gain sequence and of the step multiplier sigmoid, and their automatic estimation from
gradient and Jacobian statistics.

The gain sequence is :math:`a(k) = a/(A+k+1)^\\alpha` and the step multiplier is the sigmoid

.. math::

   s(t) = f_{min} + \\frac{f_{max}-f_{min}}{1+e^{-t/\\omega}},

where the time :math:`t` accumulates the cosines between consecutive search directions.
"""
from collections import namedtuple

import numpy as np
from scipy.special import expit

_epsilon = 1e-14


class SettingsRecord(namedtuple('SettingsRecord', ['a', 'A', 'alpha', 'fmax', 'fmin', 'omega'])):
    """
    Immutable settings of one resolution level. Construction validates that fmax > 0 > fmin, omega > 0,
    A >= 0 and a >= 0.
    """
    __slots__ = ()

    def __new__(cls, a, A, alpha, fmax, fmin, omega):
        values = [float(v) for v in (a, A, alpha, fmax, fmin, omega)]
        if not np.all(np.isfinite(values)):
            raise ValueError('Settings need to be finite, got ' + str(values))
        a, A, alpha, fmax, fmin, omega = values
        if not fmax > 0.:
            raise ValueError('SigmoidMax needs to be larger than 0, got ' + str(fmax))
        if not fmin < 0.:
            raise ValueError('SigmoidMin needs to be smaller than 0, got ' + str(fmin))
        if not omega > 0.:
            raise ValueError('SigmoidScale needs to be larger than 0, got ' + str(omega))
        if A < 0.:
            raise ValueError('SP_A needs to be at least 0, got ' + str(A))
        if a < 0.:
            raise ValueError('SP_a needs to be at least 0, got ' + str(a))
        return super(SettingsRecord, cls).__new__(cls, a, A, alpha, fmax, fmin, omega)

    @classmethod
    def from_parameters(cls, params, level=0, nr_of_resolutions=1):
        """
        Creates the user/default settings of a resolution level from the optimizer parameters

        :param params: ParameterDict of the optimizer category
        :param level: resolution level
        :param nr_of_resolutions: number of resolution levels
        :return: SettingsRecord
        """
        return cls(a=params.get_resolution_value('SP_a', level, nr_of_resolutions, 400.0, 'gain numerator'),
                   A=params.get_resolution_value('SP_A', level, nr_of_resolutions, 20.0, 'gain offset'),
                   alpha=params.get_resolution_value('SP_alpha', level, nr_of_resolutions, 1.0, 'gain decay exponent'),
                   fmax=params.get_resolution_value('SigmoidMax', level, nr_of_resolutions, 1.0, 'maximum of the step multiplier'),
                   fmin=params.get_resolution_value('SigmoidMin', level, nr_of_resolutions, -0.8, 'minimum of the step multiplier'),
                   omega=params.get_resolution_value('SigmoidScale', level, nr_of_resolutions, 1e-8, 'width of the step multiplier sigmoid'))

    def gain(self, k):
        """
        :param k: iteration number (starting at 0)
        :return: gain a(k)
        """
        if k < 0:
            raise ValueError('Iteration numbers start at 0')
        return self.a / (self.A + k + 1.) ** self.alpha

    def sigmoid(self, t):
        """
        Step multiplier for time t; always within [fmin, fmax]

        :param t: time (scalar or array)
        :return: multiplier
        """
        e = expit(np.asarray(t, dtype='float64') / self.omega)
        value = self.fmin + (self.fmax - self.fmin) * e
        # saturated sigmoid returns the bounds exactly
        value = np.where(e >= 1., self.fmax, np.clip(value, self.fmin, self.fmax))
        if np.ndim(value) == 0:
            return float(value)
        return value


def perturbation_sigma(maximum_step_length, maxJJ):
    """
    Standard deviation of the parameter perturbations, chosen such that a perturbation moves voxels by
    about the maximum step length.

    :param maximum_step_length: maximum voxel displacement of one step
    :param maxJJ: Jacobian term maxJJ
    :return: sigma (0 if maxJJ is degenerate)
    """
    if not np.isfinite(maxJJ) or maxJJ <= 0.:
        return 0.
    return float(maximum_step_length / np.sqrt(maxJJ))


class ParameterEstimator(object):
    """
    Combines gradient and Jacobian statistics into the settings of one resolution level.
    """

    def __init__(self, default_settings, nr_of_parameters, use_adaptive_step_sizes=True, initial_time=0.):
        """
        :param default_settings: SettingsRecord used when the statistics are degenerate (also provides A)
        :param nr_of_parameters: number of transform parameters
        :param use_adaptive_step_sizes: if True the first step is calibrated with s(initial_time), otherwise with fmax
        :param initial_time: initial time of the adaptive step sizes
        """
        self.default_settings = default_settings
        self.nr_of_parameters = nr_of_parameters
        self.use_adaptive_step_sizes = use_adaptive_step_sizes
        self.initial_time = initial_time

    def compute_sigmas(self, gg, ee, TrC, used_maximum_likelihood=False):
        """
        :return: tuple (sigma1, sigma3) of the gradient signal and noise levels
        """
        if used_maximum_likelihood:
            sigma1 = np.sqrt(gg / self.nr_of_parameters)
        else:
            sigma1 = np.sqrt(gg / TrC)
        sigma3 = np.sqrt(ee / TrC)
        if sigma1 < _epsilon:
            sigma1 = 0.
        if sigma3 < _epsilon:
            sigma3 = 0.
        return float(sigma1), float(sigma3)

    def estimate(self, gg, ee, TrC, TrCC, maxJJ, maxJCJ, maximum_step_length, used_maximum_likelihood=False):
        """
        Estimates the settings

        :param gg: mean squared exact gradient magnitude
        :param ee: mean squared approximation error of the stochastic gradient
        :param TrC: Jacobian term tr(C)
        :param TrCC: Jacobian term tr(CC)
        :param maxJJ: Jacobian term maxJJ
        :param maxJCJ: Jacobian term maxJCJ
        :param maximum_step_length: desired maximum voxel displacement of the first step
        :param used_maximum_likelihood: True if gg was measured as g^T C^-1 g
        :return: SettingsRecord
        """
        inputs = [gg, ee, TrC, TrCC, maxJJ, maxJCJ, maximum_step_length]
        if not np.all(np.isfinite(inputs)) or TrC <= 0. or maxJJ <= 0.:
            print('WARNING: degenerate statistics for parameter estimation (gg={}, ee={}, TrC={}, TrCC={}, maxJJ={}, '
                  'maxJCJ={}); using the default settings'.format(gg, ee, TrC, TrCC, maxJJ, maxJCJ))
            return self.default_settings

        sigma1, sigma3 = self.compute_sigmas(gg, ee, TrC, used_maximum_likelihood)
        s1s1 = sigma1 ** 2
        s3s3 = sigma3 ** 2

        noise_factor = s1s1 / (s1s1 + s3s3 + _epsilon)
        alpha = 1.
        A = self.default_settings.A
        fmax = 1.
        fmin = -0.99 + 0.98 * noise_factor
        if s1s1 + s3s3 > 0.:
            omega = max(_epsilon, 0.1 * s3s3 * np.sqrt(TrCC) / ((s1s1 + s3s3) * TrC))
        else:
            omega = _epsilon

        settings = SettingsRecord(0., A, alpha, fmax, fmin, omega)
        if self.use_adaptive_step_sizes:
            initial_multiplier = settings.sigmoid(self.initial_time)
        else:
            initial_multiplier = fmax

        if sigma1 == 0. or maxJCJ <= 0.:
            a = 0.
        else:
            a = (A + 1.) ** alpha * maximum_step_length * noise_factor / (sigma1 * np.sqrt(maxJCJ) * initial_multiplier)

        return SettingsRecord(a, A, alpha, fmax, fmin, omega)
