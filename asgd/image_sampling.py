"""
Package to draw samples (physical points and fixed image intensities) from the fixed image. Two kinds of
samplers are needed by the optimizer: a stochastic sampler which returns a new small sample set every time
(used for the approximate gradients and during the iterations) and deterministic grid samplers (used for
the exact gradient and for measuring the transform Jacobians).
"""
from abc import ABCMeta, abstractmethod

import numpy as np
from scipy import ndimage as nd

from . import utils


class ImageSampleContainer(object):
    """
    Ordered, finite set of image samples.
    """

    def __init__(self, points, values):
        """
        :param points: physical sample positions, M x dim
        :param values: fixed image intensities at the sample positions, M
        """
        self.points = np.asarray(points, dtype='float64')
        """physical positions, M x dim"""
        self.values = np.asarray(values, dtype='float64').reshape(-1)
        """intensities"""
        if self.points.ndim != 2 or len(self.points) != len(self.values):
            raise ValueError('Sample points need to be of shape M x dim with one value per point')

    def __len__(self):
        return len(self.values)

    def __iter__(self):
        return zip(self.points, self.values)

    @property
    def dim(self):
        return self.points.shape[1]


class ImageSamplerBase(object, metaclass=ABCMeta):
    """
    Abstract sampler base class.
    """

    def __init__(self, image, spacing, origin=None, mask=None):
        """
        :param image: fixed image (spatial dimensions only)
        :param spacing: image spacing
        :param origin: physical position of the first voxel (defaults to 0)
        :param mask: optional boolean mask of the same size as the image; only voxels inside are sampled
        """
        self.image = np.asarray(image, dtype='float64')
        """fixed image"""
        self.dim = self.image.ndim
        """spatial dimension"""
        self.spacing = np.asarray(spacing, dtype='float64').reshape(-1)
        """image spacing"""
        if len(self.spacing) != self.dim:
            raise ValueError('Spacing has ' + str(len(self.spacing)) + ' entries, but the image is ' + str(self.dim) + 'D')
        if origin is None:
            origin = np.zeros(self.dim)
        self.origin = np.asarray(origin, dtype='float64').reshape(-1)
        """physical position of the first voxel"""
        if mask is not None:
            mask = np.asarray(mask, dtype=bool)
            if mask.shape != self.image.shape:
                raise ValueError('Mask and image need to be of the same size')
        self.mask = mask
        """optional sampling mask"""

    def _samples_from_indices(self, indices):
        """
        :param indices: voxel indices, M x dim
        :return: sample container with the corresponding physical points and intensities
        """
        indices = np.asarray(indices, dtype='int64').reshape(-1, self.dim)
        points = self.origin + indices * self.spacing
        values = self.image[tuple(indices.T)]
        return ImageSampleContainer(points, values)

    def _valid_voxel_indices(self, grid_spacing=None):
        if grid_spacing is None:
            grid_spacing = np.ones(self.dim, dtype='int64')
        slices = tuple(slice(0, s, g) for s, g in zip(self.image.shape, grid_spacing))
        sub_sz = [len(range(*sl.indices(s))) for sl, s in zip(slices, self.image.shape)]
        indices = utils.identity_map(sub_sz, grid_spacing, dtype='int64').reshape(self.dim, -1).T
        if self.mask is not None:
            indices = indices[self.mask[tuple(indices.T)]]
        return indices

    @abstractmethod
    def get_samples(self):
        """
        :return: ImageSampleContainer
        """
        pass


class ImageFullSampler(ImageSamplerBase):
    """
    Samples every voxel (inside the mask).
    """

    def get_samples(self):
        return self._samples_from_indices(self._valid_voxel_indices())


class ImageGridSampler(ImageSamplerBase):
    """
    Samples the voxels of a regular grid with integer grid spacing. If a desired number of samples is given,
    the grid spacing is chosen such that approximately that many samples are drawn; images which are too
    small for the requested number result in fewer samples.
    """

    def __init__(self, image, spacing, origin=None, mask=None, number_of_samples=None, sample_grid_spacing=None):
        """
        :param number_of_samples: desired number of samples (determines the grid spacing)
        :param sample_grid_spacing: grid spacing in voxels; ignored if number_of_samples is given
        """
        super(ImageGridSampler, self).__init__(image, spacing, origin, mask)
        self.number_of_samples = number_of_samples
        """desired number of samples"""
        if sample_grid_spacing is None:
            sample_grid_spacing = 1
        self.sample_grid_spacing = np.tile(np.asarray(sample_grid_spacing, dtype='int64'),
                                           self.dim // np.size(sample_grid_spacing))
        """grid spacing in voxels"""

    def set_number_of_samples(self, number_of_samples):
        self.number_of_samples = number_of_samples

    def _compute_grid_spacing(self):
        if self.number_of_samples is None:
            return self.sample_grid_spacing
        if self.number_of_samples <= 0:
            raise ValueError('The number of samples needs to be positive')

        if self.mask is not None:
            nr_of_voxels = int(self.mask.sum())
        else:
            nr_of_voxels = self.image.size
        fraction = float(nr_of_voxels) / float(self.number_of_samples)
        grid_spacing = max(1, int(np.floor(fraction ** (1. / self.dim))))
        return np.tile(grid_spacing, self.dim).astype('int64')

    def get_samples(self):
        grid_spacing = self._compute_grid_spacing()
        samples = self._samples_from_indices(self._valid_voxel_indices(grid_spacing))
        if self.number_of_samples is not None and len(samples) < self.number_of_samples:
            print('INFO: image too small for ' + str(self.number_of_samples) + ' grid samples; using ' +
                  str(len(samples)) + ' samples')
        return samples


class ImageRandomSampler(ImageSamplerBase):
    """
    Draws voxels uniformly at random (with replacement). Every call to get_samples returns a new sample set
    unless new samples are turned off.
    """

    def __init__(self, image, spacing, origin=None, mask=None, number_of_samples=2000, seed=None):
        """
        :param number_of_samples: number of samples per set
        :param seed: seed of the random generator
        """
        super(ImageRandomSampler, self).__init__(image, spacing, origin, mask)
        if number_of_samples <= 0:
            raise ValueError('The number of samples needs to be positive')
        self.number_of_samples = number_of_samples
        """number of samples drawn per set"""
        self.rng = np.random.default_rng(seed)
        """random generator"""
        self.new_samples_every_call = True
        """if False the first drawn sample set is returned every time"""
        self._candidates = self._valid_voxel_indices()
        if len(self._candidates) == 0:
            raise ValueError('No voxels to sample from (empty mask?)')
        self._last_samples = None

    def set_new_samples_every_call(self, val):
        self.new_samples_every_call = val

    def _draw(self):
        chosen = self.rng.integers(0, len(self._candidates), size=self.number_of_samples)
        return self._samples_from_indices(self._candidates[chosen])

    def get_samples(self):
        if self.new_samples_every_call or self._last_samples is None:
            self._last_samples = self._draw()
        return self._last_samples


class ImageRandomCoordinateSampler(ImageRandomSampler):
    """
    Draws positions uniformly at random in continuous coordinates; the fixed image is linearly interpolated
    at these positions.
    """

    def _draw(self):
        chosen = self.rng.integers(0, len(self._candidates), size=self.number_of_samples)
        offsets = self.rng.uniform(-0.5, 0.5, size=(self.number_of_samples, self.dim))
        upper = np.array(self.image.shape, dtype='float64') - 1.
        coordinates = np.clip(self._candidates[chosen] + offsets, 0., upper)
        values = nd.map_coordinates(self.image, coordinates.T, order=1, mode='nearest')
        return ImageSampleContainer(self.origin + coordinates * self.spacing, values)
