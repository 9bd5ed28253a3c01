"""
Helper functions to take care of the diagnostic file IO: the Jacobian covariance matrix of a
resolution level (together with the estimated gradient signal and noise levels) and the settings
vector in parameter file syntax. The string conversions are pure; the write functions only add the
file handling.
"""
import io
import os
from collections import namedtuple

import numpy as np

_comment_prefix = '// '

CovarianceSnapshot = namedtuple('CovarianceSnapshot', ['sigma1', 'sigma3', 'covariance'])
"""Immutable snapshot of the covariance matrix C and the gradient signal (sigma1) and noise (sigma3) levels"""

settings_parameter_names = [('SP_a', 'a'), ('SP_A', 'A'), ('SP_alpha', 'alpha'),
                            ('SigmoidMax', 'fmax'), ('SigmoidMin', 'fmin'), ('SigmoidScale', 'omega')]
"""parameter file names of the SettingsRecord fields"""


def get_covariance_matrix_filename(output_directory, level):
    """
    :param output_directory: directory the diagnostic files go to
    :param level: resolution level
    :return: filename of the covariance matrix of this level
    """
    return os.path.join(output_directory, 'CovarianceMatrix.' + str(level) + '.txt')


def covariance_snapshot_to_string(snapshot):
    """
    Converts a covariance snapshot to text: two header lines with sigma1 and sigma3 followed by the
    rows of the matrix.

    :param snapshot: CovarianceSnapshot
    :return: string
    """
    covariance = np.atleast_2d(np.asarray(snapshot.covariance, dtype='float64'))
    stream = io.StringIO()
    header = 'sigma1 {!r}\nsigma3 {!r}'.format(float(snapshot.sigma1), float(snapshot.sigma3))
    np.savetxt(stream, covariance, fmt='%.17g', header=header, comments=_comment_prefix)
    return stream.getvalue()


def covariance_snapshot_from_string(text):
    """
    Inverse of :func:`covariance_snapshot_to_string`

    :param text: string
    :return: CovarianceSnapshot
    """
    sigmas = dict()
    for line in text.splitlines():
        if line.startswith(_comment_prefix):
            entries = line[len(_comment_prefix):].split()
            if len(entries) == 2 and entries[0] in ['sigma1', 'sigma3']:
                sigmas[entries[0]] = float(entries[1])
    if 'sigma1' not in sigmas or 'sigma3' not in sigmas:
        raise ValueError('Covariance matrix file is missing the sigma1/sigma3 header')
    covariance = np.loadtxt(io.StringIO(text), comments=_comment_prefix.strip(), ndmin=2)
    return CovarianceSnapshot(sigmas['sigma1'], sigmas['sigma3'], covariance)


def write_covariance_matrix(filename, snapshot):
    """
    Writes a covariance snapshot to a text file

    :param filename: output filename
    :param snapshot: CovarianceSnapshot
    """
    with open(filename, 'w') as f:
        f.write(covariance_snapshot_to_string(snapshot))


def read_covariance_matrix(filename):
    """
    Reads a covariance snapshot written by :func:`write_covariance_matrix`

    :param filename: input filename
    :return: CovarianceSnapshot
    """
    with open(filename) as f:
        return covariance_snapshot_from_string(f.read())


def settings_vector_to_string(settings_vector):
    """
    Renders the settings of all resolution levels in parameter file syntax, one line per setting with
    one value per level, e.g., ``(SP_a 12.5 8.1)``.

    :param settings_vector: list of SettingsRecord
    :return: string
    """
    lines = []
    for name, field in settings_parameter_names:
        values = ' '.join('{!r}'.format(float(getattr(s, field))) for s in settings_vector)
        lines.append('(' + name + ' ' + values + ')')
    return '\n'.join(lines) + '\n'


def write_settings_vector(filename, settings_vector):
    """
    Writes the settings vector in parameter file syntax

    :param filename: output filename
    :param settings_vector: list of SettingsRecord
    """
    with open(filename, 'w') as f:
        f.write(settings_vector_to_string(settings_vector))
