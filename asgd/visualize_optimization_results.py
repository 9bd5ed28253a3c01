import matplotlib as matplt

from .config_parser import MATPLOTLIB_AGG
if MATPLOTLIB_AGG:
    matplt.use('Agg')


"""
Some utility functions to display the optimization history
"""

import matplotlib.pyplot as plt
import numpy as np


def _split_by_resolution(history, key):
    values = np.asarray(history[key], dtype='float64')
    if 'resolution' not in history:
        return [(0, np.arange(len(values)), values)]
    resolutions = np.asarray(history['resolution'])
    iterations = np.asarray(history['iter'])
    return [(r, iterations[resolutions == r], values[resolutions == r]) for r in np.unique(resolutions)]


def plot_optimization_history(history, filename=None, show=False):
    """
    Plots the metric value, the gain and the step multiplier over the iterations, one curve per
    resolution level.

    :param history: history dictionary of the optimizer (see get_history)
    :param filename: if given the figure is saved to this file
    :param show: if True the figure is shown
    :return: the matplotlib figure
    """
    keys = [k for k in ['metric', 'gain', 'step_multiplier'] if k in history and len(history[k]) > 0]
    if len(keys) == 0:
        raise ValueError('History does not contain any iterations to plot')

    fig, axes = plt.subplots(len(keys), 1, sharex=True, squeeze=False)
    plt.setp(fig, 'facecolor', 'white')

    for ax, key in zip(axes[:, 0], keys):
        for resolution, iterations, values in _split_by_resolution(history, key):
            ax.plot(iterations, values, label='resolution ' + str(resolution))
        ax.set_ylabel(key)
        if key == 'gain':
            ax.set_yscale('log')
    axes[-1, 0].set_xlabel('iteration')
    axes[0, 0].legend()

    if filename is not None:
        fig.savefig(filename)
    if show:
        plt.show()

    return fig
