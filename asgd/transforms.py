"""
Spatial transforms the optimizer works with. A transform maps points of the fixed image domain into the
moving image domain and provides the Jacobian of the mapped point with respect to its parameters. The
``structure`` property tells the optimizer which specialization of the Jacobian statistics applies.
"""
from abc import ABCMeta, abstractmethod
from enum import Enum

import numpy as np


class TransformStructure(Enum):
    """Capability flag describing the sparsity structure of a transform Jacobian."""

    GENERIC = 'generic'
    """dense Jacobian, no structure to exploit"""
    TRANSLATION = 'translation'
    """Jacobian is the identity at every point"""
    COMPACT_SUPPORT = 'compact_support'
    """every point is influenced by a bounded subset of parameters only"""


class Transform(object, metaclass=ABCMeta):
    """
    Abstract transform base class.
    """

    def __init__(self, dim, nr_of_parameters):
        """
        :param dim: spatial dimension
        :param nr_of_parameters: total number of transform parameters
        """
        self.dim = dim
        """spatial dimension"""
        self.parameters = np.zeros(nr_of_parameters, dtype='float64')
        """current parameter vector"""

    @property
    def number_of_parameters(self):
        return len(self.parameters)

    @property
    def structure(self):
        return TransformStructure.GENERIC

    def get_parameters(self):
        return self.parameters.copy()

    def set_parameters(self, parameters):
        parameters = np.asarray(parameters, dtype='float64').reshape(-1)
        if len(parameters) != self.number_of_parameters:
            raise ValueError('Expected ' + str(self.number_of_parameters) + ' parameters, but got ' + str(len(parameters)))
        self.parameters = parameters.copy()

    @abstractmethod
    def transform_points(self, points):
        """
        Maps points with the current parameters

        :param points: array of points, M x dim
        :return: mapped points, M x dim
        """
        pass

    @abstractmethod
    def jacobian(self, point):
        """
        Jacobian of the mapped point with respect to all parameters

        :param point: point of dimension dim
        :return: dim x P matrix
        """
        pass


class TranslationTransform(Transform):
    """
    Translation, y = x + b. The Jacobian is the identity everywhere.
    """

    def __init__(self, dim):
        super(TranslationTransform, self).__init__(dim, dim)

    @property
    def structure(self):
        return TransformStructure.TRANSLATION

    def transform_points(self, points):
        return np.asarray(points, dtype='float64') + self.parameters[None, :]

    def jacobian(self, point):
        return np.eye(self.dim)


class AffineTransform(Transform):
    """
    Affine transform y = A(x-c)+c+b around the center of rotation c. As for the affine maps of the
    registration models, the matrix A = [a1,a2,a3] is stored column by column, followed by the
    translation b, i.e., the parameter vector is [a1;a2;a3;b]. The parameters are initialized to the
    identity transform.
    """

    def __init__(self, dim, center=None):
        """
        :param dim: spatial dimension
        :param center: center of rotation; defaults to the origin
        """
        super(AffineTransform, self).__init__(dim, dim * (dim + 1))
        if center is None:
            center = np.zeros(dim)
        center = np.asarray(center, dtype='float64').reshape(-1)
        if len(center) != dim:
            raise ValueError('Center of rotation needs ' + str(dim) + ' coordinates, but got ' + str(len(center)))
        self.center = center
        """center of rotation"""
        self.parameters[:dim * dim] = np.eye(dim).reshape(-1, order='F')

    @classmethod
    def from_image_geometry(cls, sz, spacing, origin=None):
        """
        Creates an affine transform rotating around the geometric center of an image

        :param sz: spatial image size
        :param spacing: image spacing
        :param origin: physical position of the first voxel (defaults to 0)
        :return: affine transform
        """
        if sz is None or spacing is None:
            raise ValueError('Image size and spacing are required to establish the center of rotation')
        sz = np.asarray(sz)
        spacing = np.asarray(spacing, dtype='float64')
        if len(sz) != len(spacing):
            raise ValueError('Image size and spacing have inconsistent dimensions')
        if origin is None:
            origin = np.zeros(len(sz))
        center = np.asarray(origin, dtype='float64') + (sz - 1) * spacing / 2.
        return cls(len(sz), center=center)

    def get_matrix(self):
        return self.parameters[:self.dim * self.dim].reshape(self.dim, self.dim, order='F')

    def get_translation(self):
        return self.parameters[self.dim * self.dim:]

    def transform_points(self, points):
        points = np.asarray(points, dtype='float64')
        A = self.get_matrix()
        return (points - self.center) @ A.T + self.center + self.get_translation()

    def jacobian(self, point):
        dim = self.dim
        x = np.asarray(point, dtype='float64') - self.center
        J = np.zeros((dim, self.number_of_parameters))
        for q in range(dim):
            for r in range(dim):
                J[r, q * dim + r] = x[q]
        J[:, dim * dim:] = np.eye(dim)
        return J


def _cubic_bspline_weights(u):
    """
    Weights of the four cubic B-spline basis functions which are nonzero at the fractional position u.

    :param u: fractional offset in [0,1) with respect to the second support point
    :return: array of four weights (summing to one)
    """
    return np.array([(1. - u) ** 3 / 6.,
                     (3. * u ** 3 - 6. * u ** 2 + 4.) / 6.,
                     (-3. * u ** 3 + 3. * u ** 2 + 3. * u + 1.) / 6.,
                     u ** 3 / 6.])


class BSplineTransform(Transform):
    """
    Cubic B-spline free-form deformation y = x + sum_i w_i(x) c_i on a regular control point grid. Every
    point is influenced by the 4^dim control points around it only. The parameters are ordered by
    dimension: first the displacements along the first axis of all control points, then along the second
    axis, etc.
    """

    support_size = 4
    """number of control points per axis influencing a point (cubic splines)"""

    def __init__(self, grid_size, grid_spacing, grid_origin=None):
        """
        :param grid_size: number of control points per axis
        :param grid_spacing: distance between control points per axis
        :param grid_origin: physical position of the first control point
        """
        grid_size = np.asarray(grid_size, dtype='int64')
        dim = len(grid_size)
        if (grid_size < self.support_size).any():
            raise ValueError('A cubic B-spline grid needs at least ' + str(self.support_size) + ' control points per axis')
        self.grid_size = grid_size
        """number of control points per axis"""
        self.grid_spacing = np.asarray(grid_spacing, dtype='float64').reshape(-1)
        """control point spacing"""
        if grid_origin is None:
            grid_origin = np.zeros(dim)
        self.grid_origin = np.asarray(grid_origin, dtype='float64').reshape(-1)
        """position of the first control point"""
        if len(self.grid_spacing) != dim or len(self.grid_origin) != dim:
            raise ValueError('Grid size, spacing, and origin have inconsistent dimensions')

        self.number_of_parameters_per_dimension = int(np.prod(grid_size))
        """number of control points; each has one parameter per spatial dimension"""
        self.number_of_weights = self.support_size ** dim
        """number of nonzero basis functions at any point"""

        super(BSplineTransform, self).__init__(dim, dim * self.number_of_parameters_per_dimension)

    @classmethod
    def from_image_geometry(cls, sz, spacing, control_point_spacing, origin=None):
        """
        Creates a B-spline transform whose control grid covers an image, with one extra control point on
        each side so that every voxel has full support.

        :param sz: spatial image size
        :param spacing: image spacing
        :param control_point_spacing: desired physical distance between control points
        :param origin: physical position of the first voxel (defaults to 0)
        :return: B-spline transform
        """
        sz = np.asarray(sz)
        spacing = np.asarray(spacing, dtype='float64')
        if origin is None:
            origin = np.zeros(len(sz))
        grid_spacing = np.tile(np.asarray(control_point_spacing, dtype='float64'), len(sz) // np.size(control_point_spacing))
        extent = (sz - 1) * spacing
        nr_of_cells = np.ceil(extent / grid_spacing).astype('int64')
        grid_size = nr_of_cells + 4
        grid_origin = np.asarray(origin, dtype='float64') - grid_spacing
        return cls(grid_size, grid_spacing, grid_origin)

    @property
    def structure(self):
        return TransformStructure.COMPACT_SUPPORT

    def get_coefficients(self):
        """
        :return: control point displacements, dim x nr_of_control_points
        """
        return self.parameters.reshape(self.dim, self.number_of_parameters_per_dimension)

    def jacobian_weights(self, point):
        """
        Returns the weights of the control points influencing a point. The Jacobian with respect to the
        parameters of spatial dimension d is the same for all d, so one weight vector describes it fully.
        Control points outside of the grid get weight zero (and the index of the first control point).

        :param point: point of dimension dim
        :return: tuple (weights, indices) of length 4^dim; indices are positions within one dimension block
        """
        u = (np.asarray(point, dtype='float64') - self.grid_origin) / self.grid_spacing
        start = np.floor(u).astype('int64') - 1
        frac = u - np.floor(u)

        weights = np.ones(1)
        indices = np.zeros(1, dtype='int64')
        valid = np.ones(1, dtype=bool)
        stride = 1
        for d in reversed(range(self.dim)):
            w_d = _cubic_bspline_weights(frac[d])
            i_d = start[d] + np.arange(self.support_size)
            v_d = (i_d >= 0) & (i_d < self.grid_size[d])
            weights = np.multiply.outer(w_d, weights).reshape(-1)
            indices = np.add.outer(i_d * stride, indices).reshape(-1)
            valid = np.logical_and.outer(v_d, valid).reshape(-1)
            stride *= self.grid_size[d]

        weights[~valid] = 0.
        indices[~valid] = 0
        return weights, indices

    def transform_points(self, points):
        points = np.asarray(points, dtype='float64')
        coefficients = self.get_coefficients()
        displacement = np.zeros_like(points)
        for m, point in enumerate(points):
            weights, indices = self.jacobian_weights(point)
            displacement[m] = coefficients[:, indices] @ weights
        return points + displacement

    def jacobian(self, point):
        weights, indices = self.jacobian_weights(point)
        n = self.number_of_parameters_per_dimension
        J = np.zeros((self.dim, self.number_of_parameters))
        for d in range(self.dim):
            np.add.at(J[d], d * n + indices, weights)
        return J
