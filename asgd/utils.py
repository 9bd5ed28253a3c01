"""
Various utility functions.
"""
import numpy as np


def identity_map(sz, spacing, dtype='float32'):
    """
    Returns an identity map.

    :param sz: just the spatial dimensions, i.e., XxYxZ
    :param spacing: list with spacing information [sx,sy,sz]
    :param dtype: numpy data-type ('float32', 'float64', 'int64', ...)
    :return: returns the identity map of dimension dimxXxYxZ
    """
    dim = len(sz)
    if dim < 1:
        raise ValueError('The identity map needs at least one spatial dimension')

    id = np.mgrid[tuple(slice(0, s) for s in sz)].astype(dtype)
    id = id.reshape([dim] + list(sz))

    # now get it into range [0,(sz-1)*spacing]^d
    for d in range(dim):
        id[d] *= np.asarray(spacing[d]).astype(dtype)

    return id


def t2np(v):
    """
    Takes a torch array and returns it as a numpy array on the cpu

    :param v: torch array
    :return: numpy array
    """
    return (v.detach()).cpu().numpy()


def get_scalar(v):
    if isinstance(v, float):
        return v
    elif isinstance(v, np.ndarray) and v.size == 1:
        return float(v.reshape(-1)[0])
    return float(v)


def mean_spacing(*spacings):
    """
    Mean voxel spacing over all given images; used as default maximum step length.

    :param spacings: spacings of the images (e.g., of the fixed and the moving image)
    :return: mean over all entries
    """
    if len(spacings) == 0:
        raise ValueError('At least one spacing is required')
    return float(np.mean(np.concatenate([np.asarray(s, dtype='float64').reshape(-1) for s in spacings])))


def cosine_of_angle(v1, v2):
    """
    Cosine of the angle between two vectors; 0 if one of them vanishes.

    :param v1: first vector
    :param v2: second vector
    :return: cosine in [-1,1]
    """
    n = np.linalg.norm(v1) * np.linalg.norm(v2)
    if n == 0.:
        return 0.
    return float(np.clip(np.dot(v1, v2) / n, -1., 1.))
