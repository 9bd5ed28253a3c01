"""
Package to create example images to test the optimizer: pairs of synthetic images which differ by a
known shift.
"""
from abc import ABCMeta, abstractmethod

import numpy as np

from . import utils


class CreateExample(object, metaclass=ABCMeta):
    """
    Abstract base class.
    """

    def __init__(self, dim):
        """
        Constructor

        :param dim: Desired dimension of the example image
        """
        self.dim = dim
        """Spatial dimension"""

    @abstractmethod
    def create_image_pair(self, sz, params, shift=None):
        """
        Abstract method to create example image pairs

        :param sz: Desired size, e.g., [32,32]
        :param params: Parameter dictionary
        :param shift: physical displacement of the moving image content with respect to the fixed image
        :return: Returns fixed image, moving image and spacing (I0,I1,spacing)
        """
        pass

    def _get_size_and_shift(self, sz, shift):
        sz = np.asarray(sz, dtype='int64')
        if len(sz) != self.dim:
            raise ValueError('Size needs ' + str(self.dim) + ' entries, but got ' + str(len(sz)))
        if shift is None:
            shift = np.zeros(self.dim)
        shift = np.asarray(shift, dtype='float64').reshape(-1)
        if len(shift) != self.dim:
            raise ValueError('Shift needs ' + str(self.dim) + ' entries, but got ' + str(len(shift)))
        return sz, shift


class CreateSquares(CreateExample):
    """
    Class to create two (smoothed) squares in arbitrary dimension, the second one shifted
    """

    def __init__(self, dim, add_noise_to_bg=False, seed=None):
        super(CreateSquares, self).__init__(dim)
        self.add_noise_to_bg = add_noise_to_bg
        self.rng = np.random.default_rng(seed)

    def create_image_pair(self, sz, params, shift=None):
        """
        Creates two square images; the edges are smoothed over one voxel so that the images have
        informative gradients.

        :param sz: Desired size, e.g., [32,32]
        :param params: Parameter dictionary. Uses 'len_s' to define the half side-length (in voxels) of the square
        :param shift: physical shift of the square in the moving image
        :return: Returns two images of squares and the spacing (I0,I1,spacing)
        """
        sz, shift = self._get_size_and_shift(sz, shift)

        params[('square_example_images', {}, 'Controlling the size of a nD cube')]
        len_s = params['square_example_images'][('len_s', int(sz.min() // 4), 'Half side-length of the square')]

        spacing = np.ones(self.dim)
        id = utils.identity_map(sz, spacing, dtype='float64')
        c = (sz - 1) / 2.

        def square(center):
            I = np.ones(sz)
            for d in range(self.dim):
                dist = np.abs(id[d] - center[d])
                I *= np.clip(len_s + 0.5 - dist, 0., 1.)
            return I

        I0 = square(c)
        I1 = square(c + shift / spacing)
        if self.add_noise_to_bg:
            I0 += self.rng.random(sz) / 5.
            I1 += self.rng.random(sz) / 5.

        return I0, I1, spacing


class CreateGaussianBlobs(CreateExample):
    """
    Class to create two images of a Gaussian blob; the blob of the second image is shifted
    """

    def create_image_pair(self, sz, params, shift=None):
        """
        :param sz: Desired size, e.g., [32,32]
        :param params: Parameter dictionary. Uses 'sigma' (in voxels) to define the width of the blob
        :param shift: physical shift of the blob in the moving image
        :return: Returns two images and the spacing (I0,I1,spacing)
        """
        sz, shift = self._get_size_and_shift(sz, shift)

        params[('gaussian_blob_example_images', {}, 'Controlling the width of a Gaussian blob')]
        sigma = params['gaussian_blob_example_images'][('sigma', float(sz.min()) / 6., 'Standard deviation of the blob (in voxels)')]

        spacing = np.ones(self.dim)
        id = utils.identity_map(sz, spacing, dtype='float64')
        c = (sz - 1) / 2.

        def blob(center):
            r2 = np.zeros(sz)
            for d in range(self.dim):
                r2 += (id[d] - center[d]) ** 2
            return np.exp(-r2 / (2. * sigma ** 2))

        return blob(c), blob(c + shift / spacing), spacing
