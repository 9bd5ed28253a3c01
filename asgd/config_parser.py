"""
Default settings of the optimizer and of the computational backend. Settings are read from
``~/.asgd_settings`` if such a directory exists, otherwise from the ``settings`` directory of the
package; every setting which is not found in a file is created with its default value and a comment,
so that writing the settings back out gives a self-documenting configuration.
"""
import os
import multiprocessing as mp

from . import module_parameters as pars


def _find_settings_directory(first_choice, second_choice, settings_name):
    for choice in [first_choice, second_choice]:
        if choice is not None and os.path.exists(choice):
            settings_filename = os.path.join(choice, settings_name)
            if os.path.exists(settings_filename):
                return settings_filename
    return None


this_directory = os.path.dirname(__file__)
standard_settings_directory = os.path.join(this_directory, 'settings')
local_settings_directory = os.path.join(os.path.expanduser('~'), '.asgd_settings')


def get_default_compute_settings_filenames():
    """Returns the filenames (settings, comments) the compute settings will be read from.

    :return: filename tuple; entries are None if no such file exists
    """
    return (_find_settings_directory(local_settings_directory, standard_settings_directory, 'compute_settings.json'),
            _find_settings_directory(local_settings_directory, standard_settings_directory, 'compute_settings_comments.json'))


def get_default_optimizer_settings_filenames():
    """Returns the filenames (settings, comments) the optimizer settings will be read from.

    :return: filename tuple; entries are None if no such file exists
    """
    return (_find_settings_directory(local_settings_directory, standard_settings_directory, 'optimizer_settings.json'),
            _find_settings_directory(local_settings_directory, standard_settings_directory, 'optimizer_settings_comments.json'))


def get_compute_settings(compute_settings_filename=None):
    """
    Returns the settings which determine how computations are done.

    :param compute_settings_filename: loads the settings from the specified file; if None the default file
        is used if it exists
    :return: parameter structure
    """
    compute_params = pars.ParameterDict()
    compute_params.print_settings_off()

    if compute_settings_filename is None:
        compute_settings_filename = get_default_compute_settings_filenames()[0]
    if compute_settings_filename is not None:
        compute_params.load_JSON(compute_settings_filename)

    compute_params[('compute', {}, 'how computations are done')]
    compute_params['compute'][('CUDA_ON', False, 'Determines if the optimizer state should live on the GPU')]
    compute_params['compute'][('MATPLOTLIB_AGG', False, 'Determines how matplotlib plots images. Set to True for remote debugging')]
    compute_params['compute'][('nr_of_threads', mp.cpu_count(), 'maximal number of threads used to accumulate the Jacobian statistics')]
    compute_params['compute'][('jacobian_chunk_size', 256, 'number of samples per accumulation chunk; fixes the floating point reduction order')]

    return compute_params


compute_params = get_compute_settings()

CUDA_ON = compute_params['compute']['CUDA_ON']
"""If set to True the optimizer state is kept on the GPU (if available)"""

MATPLOTLIB_AGG = compute_params['compute']['MATPLOTLIB_AGG']
"""If set to True matplotlib uses the Agg backend (no display needed)"""

nr_of_threads = compute_params['compute']['nr_of_threads']
"""Maximal number of worker threads for the Jacobian statistics"""

jacobian_chunk_size = compute_params['compute']['jacobian_chunk_size']
"""Number of samples per reduction chunk"""


def get_optimizer_settings(optimizer_settings_filename=None):
    """
    Returns the settings of the adaptive stochastic gradient descent optimizer as a parameter structure.
    All settings except the number of resolutions may be given as a single value or as a list with one
    value per resolution.

    :param optimizer_settings_filename: loads the settings from the specified filename, otherwise from the
        default filename or in the absence of such a file creates default settings from scratch
    :return: parameter structure
    """
    params = pars.ParameterDict()

    if optimizer_settings_filename is None:
        optimizer_settings_filename = get_default_optimizer_settings_filenames()[0]

    if optimizer_settings_filename is not None:
        print('Loading optimizer configuration from: ' + optimizer_settings_filename)
        params.load_JSON(optimizer_settings_filename)
    else:
        print('Using default optimizer settings from config_parser.py')

    params[('optimizer', {}, 'settings of the adaptive stochastic gradient descent optimizer')]
    opt = params['optimizer']

    opt[('NumberOfResolutions', 1, 'number of resolution levels')]
    opt[('MaximumNumberOfIterations', 500, 'maximum number of iterations in each resolution')]
    opt[('AutomaticParameterEstimation', True, 'if True SP_a, SP_alpha, SigmoidMax, SigmoidMin and SigmoidScale are estimated at the start of each resolution')]
    opt[('UseAdaptiveStepSizes', True, 'if True the step size adapts to the consistency of consecutive search directions')]
    opt[('SP_a', 400.0, 'gain numerator: a(k) = SP_a / (SP_A + k + 1)^SP_alpha; ignored with automatic parameter estimation')]
    opt[('SP_A', 20.0, 'gain offset: a(k) = SP_a / (SP_A + k + 1)^SP_alpha')]
    opt[('SP_alpha', 1.0, 'gain decay exponent; ignored with automatic parameter estimation')]
    opt[('SigmoidMax', 1.0, 'maximum of the step multiplier sigmoid; must be larger than 0')]
    opt[('SigmoidMin', -0.8, 'minimum of the step multiplier sigmoid; must be smaller than 0')]
    opt[('SigmoidScale', 1e-8, 'width of the step multiplier sigmoid; must be larger than 0')]
    opt[('SigmoidInitialTime', 0.0, 'initial input of the step multiplier sigmoid; must be at least 0')]
    opt[('UseMaximumLikelihoodMethod', False, 'experimental: use g^T C^-1 g as gradient magnitude during estimation')]
    opt[('SaveCovarianceMatrix', False, 'experimental: write the Jacobian covariance matrix of each resolution to file')]
    opt[('NumberOfSamplesForExactGradient', 100000, 'number of grid samples used for the exact gradient')]
    opt[('NumberOfSpatialSamples', 2000, 'number of random samples drawn per iteration if no sampler is given')]
    opt[('NewSamplesEveryIteration', True, 'if True the stochastic sampler draws new samples every iteration')]
    opt[('RandomSeed', 2019, 'seed of the perturbations drawn during parameter estimation')]
    opt[('OutputDirectory', '.', 'directory diagnostic files (covariance matrices) are written to')]

    return params
