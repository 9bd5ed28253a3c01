"""
Evaluation of transform Jacobians restricted to the parameters which actually influence a point.

For general transforms the full Jacobian is returned together with all parameter indices. For transforms
with compact support only the columns of the active control points are returned, together with their
global parameter positions. Results are written into a :class:`JacobianBuffer` owned by the caller; every
call overwrites the buffer completely, so buffers can be reused across points without leaking state.
A buffer must not be shared between threads.
"""
import numpy as np

from .transforms import TransformStructure


class JacobianBuffer(object):
    """
    Reusable storage for one sparse Jacobian evaluation.
    """

    def __init__(self, dim, nr_of_nonzero_parameters):
        self.jacobian = np.zeros((dim, nr_of_nonzero_parameters))
        """dim x K Jacobian restricted to the nonzero parameters"""
        self.nonzero_indices = np.zeros(nr_of_nonzero_parameters, dtype='int64')
        """global indices of the K nonzero parameters"""


class SparseJacobianAdapter(object):
    """
    Provides (sparse) Jacobians of a transform at given points.
    """

    def __init__(self, transform):
        """
        :param transform: transform whose Jacobian should be evaluated
        """
        self.transform = transform
        self.dim = transform.dim
        self.is_compact_support = transform.structure == TransformStructure.COMPACT_SUPPORT

        if self.is_compact_support:
            self.nr_of_weights = transform.number_of_weights
            """number of active basis functions per spatial dimension"""
            self.nr_of_parameters_per_dimension = transform.number_of_parameters_per_dimension
            self.nr_of_nonzero_parameters = self.dim * self.nr_of_weights
        else:
            self.nr_of_weights = None
            self.nr_of_parameters_per_dimension = None
            self.nr_of_nonzero_parameters = transform.number_of_parameters

    def create_buffer(self):
        """
        :return: a buffer sized for this transform
        """
        return JacobianBuffer(self.dim, self.nr_of_nonzero_parameters)

    def weights(self, point):
        """
        Weights and per-dimension indices of the active basis functions of a compact support transform.

        :param point: point of dimension dim
        :return: tuple (weights, indices), both of length nr_of_weights
        """
        if not self.is_compact_support:
            raise ValueError('Basis function weights are only available for transforms with compact support')
        return self.transform.jacobian_weights(point)

    def jacobian(self, point, buffer):
        """
        Evaluates the Jacobian at a point

        :param point: point of dimension dim
        :param buffer: JacobianBuffer created by create_buffer; overwritten
        :return: tuple (jacobian, nonzero_indices) referring to the storage of the buffer
        """
        if self.is_compact_support:
            weights, indices = self.transform.jacobian_weights(point)
            W = self.nr_of_weights
            n = self.nr_of_parameters_per_dimension
            buffer.jacobian.fill(0.)
            for d in range(self.dim):
                buffer.jacobian[d, d * W:(d + 1) * W] = weights
                buffer.nonzero_indices[d * W:(d + 1) * W] = d * n + indices
        else:
            buffer.jacobian[...] = self.transform.jacobian(point)
            buffer.nonzero_indices[:] = np.arange(self.nr_of_nonzero_parameters)

        return buffer.jacobian, buffer.nonzero_indices
