"""
Similarity measures (cost functions) for the optimizer. A cost function evaluates the mismatch between
the fixed image samples and the moving image at the transformed sample positions, and its derivative
with respect to the transform parameters.
"""
from abc import ABCMeta, abstractmethod

import numpy as np
from scipy import ndimage as nd

from .sparse_jacobian import SparseJacobianAdapter


class SimilarityMeasure(object, metaclass=ABCMeta):
    """Abstract base class for a similarity measure.
    """

    def __init__(self, moving_image, spacing, transform, origin=None, spline_order=1):
        """
        :param moving_image: moving image (spatial dimensions only)
        :param spacing: spacing of the moving image
        :param transform: transform mapping fixed image points into the moving image
        :param origin: physical position of the first moving image voxel (defaults to 0)
        :param spline_order: interpolation order of the moving image
        """
        self.moving_image = np.asarray(moving_image, dtype='float64')
        """moving image"""
        self.dim = self.moving_image.ndim
        """image dimension"""
        self.spacing = np.asarray(spacing, dtype='float64').reshape(-1)
        """pixel/voxel spacing"""
        if len(self.spacing) != self.dim:
            raise ValueError('Spacing has ' + str(len(self.spacing)) + ' entries, but the image is ' + str(self.dim) + 'D')
        if origin is None:
            origin = np.zeros(self.dim)
        self.origin = np.asarray(origin, dtype='float64').reshape(-1)
        """physical position of the first voxel"""
        if transform.dim != self.dim:
            raise ValueError('Transform and moving image have different dimensions')
        self.transform = transform
        """transform whose parameters are optimized"""
        self.spline_order = spline_order
        """order of the spline for interpolations"""

        self.jacobian_adapter = SparseJacobianAdapter(transform)
        self._buffer = self.jacobian_adapter.create_buffer()

    def _voxel_coordinates(self, points):
        return (points - self.origin) / self.spacing

    def _inside(self, voxel_coordinates):
        upper = np.array(self.moving_image.shape, dtype='float64') - 1.
        return np.all((voxel_coordinates >= 0.) & (voxel_coordinates <= upper), axis=1)

    def _interpolate(self, image, voxel_coordinates):
        return nd.map_coordinates(image, voxel_coordinates.T, order=self.spline_order, mode='nearest')

    @abstractmethod
    def get_value_and_derivative(self, parameters, samples):
        """
        Computes the cost and its derivative

        :param parameters: transform parameters
        :param samples: ImageSampleContainer of the fixed image
        :return: tuple (value, derivative)
        """
        pass

    def get_value(self, parameters, samples):
        return self.get_value_and_derivative(parameters, samples)[0]


class MeanSquaresMetric(SimilarityMeasure):
    """
    Mean of the squared intensity differences, :math:`\\frac{1}{M}\\sum_j (I_m(T(x_j))-I_f(x_j))^2`, over the
    samples which map inside the moving image.
    """

    def __init__(self, moving_image, spacing, transform, origin=None, spline_order=1):
        super(MeanSquaresMetric, self).__init__(moving_image, spacing, transform, origin, spline_order)
        # spatial derivatives of the moving image in physical units
        self.moving_image_gradient = np.gradient(self.moving_image, *self.spacing)
        if self.dim == 1:
            self.moving_image_gradient = [self.moving_image_gradient]

    def get_value_and_derivative(self, parameters, samples):
        self.transform.set_parameters(parameters)
        derivative = np.zeros(self.transform.number_of_parameters)

        mapped = self.transform.transform_points(samples.points)
        voxel_coordinates = self._voxel_coordinates(mapped)
        inside = self._inside(voxel_coordinates)
        nr_inside = int(inside.sum())
        if nr_inside == 0:
            print('WARNING: all samples map outside of the moving image')
            return 0., derivative

        voxel_coordinates = voxel_coordinates[inside]
        difference = self._interpolate(self.moving_image, voxel_coordinates) - samples.values[inside]
        value = float(np.mean(difference ** 2))

        image_gradient = np.stack([self._interpolate(g, voxel_coordinates) for g in self.moving_image_gradient], axis=1)
        for point, r, g in zip(samples.points[inside], difference, image_gradient):
            jac, indices = self.jacobian_adapter.jacobian(point, self._buffer)
            np.add.at(derivative, indices, 2. * r * (g @ jac))

        return value, derivative / nr_inside
