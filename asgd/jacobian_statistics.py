"""
Statistics of the transform Jacobian over a set of fixed image samples, as needed for the automatic
estimation of the optimizer settings. With :math:`J_j` the (scaled) Jacobian at sample :math:`j` and
:math:`C=\\frac{1}{M}\\sum_j J_j^TJ_j`, the following quantities are computed:

* :math:`TrC = tr(C)`
* :math:`TrCC = tr(CC)`
* :math:`maxJJ = \\max_j ||J_j||_F^2 + 2\\sqrt{2}||J_jJ_j^T||_F`
* :math:`maxJCJ = \\max_j tr(J_jCJ_j^T) + 2\\sqrt{2}||J_jCJ_j^T||_F`

Three algorithms are available; which one applies is decided once per transform:

* generic: accumulates the full P x P matrix C (memory O(P^2) independent of M, time O(M P^2))
* translation: the Jacobian is the identity, all terms follow in closed form
* compact support: only the parameters of the active control points contribute, and all spatial
  dimensions share the same weights, so one sparse matrix of size P/dim x P/dim suffices

Accumulations run over chunks of samples of fixed size which may be processed by several threads. The
partial sums are added in chunk order, so the results do not depend on the number of threads.
"""
from collections import namedtuple
from concurrent.futures import ThreadPoolExecutor
from enum import Enum

import numpy as np
from scipy import sparse

from . import config_parser
from .sparse_jacobian import SparseJacobianAdapter
from .transforms import TransformStructure

_two_sqrt2 = 2. * np.sqrt(2.)

JacobianTerms = namedtuple('JacobianTerms', ['TrC', 'TrCC', 'maxJJ', 'maxJCJ', 'covariance'])
"""Jacobian statistics; covariance is the P x P matrix C if it was requested, None otherwise"""


class JacobianStatisticsMethod(Enum):
    GENERIC = 'generic'
    TRANSLATION = 'translation'
    COMPACT_SUPPORT = 'compact_support'


def select_jacobian_statistics_method(transform):
    """
    Returns the most efficient algorithm for the Jacobian statistics of a transform

    :param transform: the transform
    :return: JacobianStatisticsMethod
    """
    if transform.structure == TransformStructure.TRANSLATION:
        return JacobianStatisticsMethod.TRANSLATION
    elif transform.structure == TransformStructure.COMPACT_SUPPORT:
        return JacobianStatisticsMethod.COMPACT_SUPPORT
    return JacobianStatisticsMethod.GENERIC


class JacobianStatisticsEstimator(object):
    """
    Computes the Jacobian statistics of a transform over sample sets.
    """

    def __init__(self, transform, scales=None, method=None, nr_of_threads=None, chunk_size=None):
        """
        :param transform: the transform
        :param scales: parameter scales (the Jacobian columns are divided by them); None means all ones
        :param method: JacobianStatisticsMethod; determined from the transform if None
        :param nr_of_threads: number of worker threads (defaults to the compute settings)
        :param chunk_size: number of samples per accumulation chunk (defaults to the compute settings)
        """
        self.transform = transform
        self.adapter = SparseJacobianAdapter(transform)
        self.nr_of_parameters = transform.number_of_parameters

        if scales is None:
            scales = np.ones(self.nr_of_parameters)
        self.scales = np.asarray(scales, dtype='float64').reshape(-1)
        if len(self.scales) != self.nr_of_parameters:
            raise ValueError('Expected ' + str(self.nr_of_parameters) + ' scales, but got ' + str(len(self.scales)))

        if method is None:
            method = select_jacobian_statistics_method(transform)
        if method == JacobianStatisticsMethod.TRANSLATION and transform.structure != TransformStructure.TRANSLATION:
            raise ValueError('The translation algorithm requires a translation transform')
        if method == JacobianStatisticsMethod.COMPACT_SUPPORT and not self.adapter.is_compact_support:
            raise ValueError('The compact support algorithm requires a transform with compact support')
        self.method = method
        """algorithm used for all sample sets"""

        self._compute = {JacobianStatisticsMethod.GENERIC: self._compute_generic,
                         JacobianStatisticsMethod.TRANSLATION: self._compute_translation,
                         JacobianStatisticsMethod.COMPACT_SUPPORT: self._compute_compact_support}[method]

        self.nr_of_threads = config_parser.nr_of_threads if nr_of_threads is None else nr_of_threads
        self.chunk_size = config_parser.jacobian_chunk_size if chunk_size is None else chunk_size
        if self.chunk_size < 1:
            raise ValueError('The chunk size needs to be at least one')

    def estimate(self, samples, keep_covariance=False):
        """
        Computes the Jacobian statistics

        :param samples: ImageSampleContainer with the points at which the Jacobian is measured
        :param keep_covariance: if True the dense P x P matrix C is returned as well
        :return: JacobianTerms
        """
        return self._compute(samples, keep_covariance)

    def _zero_terms(self, keep_covariance):
        covariance = np.zeros((self.nr_of_parameters, self.nr_of_parameters)) if keep_covariance else None
        return JacobianTerms(0., 0., 0., 0., covariance)

    def _reduce_chunks(self, function, nr_of_samples, combine):
        # at most nr_of_threads partial results are alive; they are combined in chunk order
        chunks = [(b, min(b + self.chunk_size, nr_of_samples)) for b in range(0, nr_of_samples, self.chunk_size)]
        total = None
        if self.nr_of_threads > 1 and len(chunks) > 1:
            nr_of_workers = min(self.nr_of_threads, len(chunks))
            with ThreadPoolExecutor(max_workers=nr_of_workers) as executor:
                for b in range(0, len(chunks), nr_of_workers):
                    for partial in executor.map(function, chunks[b:b + nr_of_workers]):
                        total = partial if total is None else combine(total, partial)
        else:
            for chunk in chunks:
                partial = function(chunk)
                total = partial if total is None else combine(total, partial)
        return total

    @staticmethod
    def _add(total, partial):
        return total + partial

    @staticmethod
    def _add_in_place(total, partial):
        total += partial
        return total

    @staticmethod
    def _maximum(total, partial):
        return max(total[0], partial[0]), max(total[1], partial[1])

    def _compute_generic(self, samples, keep_covariance):
        nr_of_samples = len(samples)
        if nr_of_samples == 0:
            return self._zero_terms(keep_covariance)

        P = self.nr_of_parameters
        points = samples.points
        inv_scales = 1. / self.scales
        # sparse Jacobians of compact support transforms may repeat (zero weight) indices
        repeated_indices = self.adapter.is_compact_support

        def accumulate(chunk):
            buffer = self.adapter.create_buffer()
            cov = np.zeros((P, P))
            for point in points[chunk[0]:chunk[1]]:
                jac, indices = self.adapter.jacobian(point, buffer)
                jac = jac * inv_scales[indices]
                if repeated_indices:
                    np.add.at(cov, (indices[:, None], indices[None, :]), jac.T @ jac)
                else:
                    cov[np.ix_(indices, indices)] += jac.T @ jac
            return cov

        cov = self._reduce_chunks(accumulate, nr_of_samples, self._add_in_place) / nr_of_samples

        TrC = float(np.trace(cov))
        # C is symmetric, so tr(CC) is the squared Frobenius norm
        TrCC = float(np.sum(cov * cov))

        def maxima(chunk):
            buffer = self.adapter.create_buffer()
            maxJJ = 0.
            maxJCJ = 0.
            for point in points[chunk[0]:chunk[1]]:
                jac, indices = self.adapter.jacobian(point, buffer)
                jac = jac * inv_scales[indices]
                JJ_j = np.sum(jac * jac) + _two_sqrt2 * np.linalg.norm(jac @ jac.T)
                JCJ = jac @ cov[np.ix_(indices, indices)] @ jac.T
                JCJ_j = np.trace(JCJ) + _two_sqrt2 * np.linalg.norm(JCJ)
                maxJJ = max(maxJJ, JJ_j)
                maxJCJ = max(maxJCJ, JCJ_j)
            return maxJJ, maxJCJ

        maxJJ, maxJCJ = self._reduce_chunks(maxima, nr_of_samples, self._maximum)
        maxJJ = float(maxJJ)
        maxJCJ = float(maxJCJ)

        return JacobianTerms(TrC, TrCC, maxJJ, maxJCJ, cov if keep_covariance else None)

    def _compute_translation(self, samples, keep_covariance):
        # J_j = diag(1/s) for every sample, hence C = diag(1/s^2)
        if len(samples) == 0:
            return self._zero_terms(keep_covariance)

        c = 1. / self.scales ** 2
        TrC = float(np.sum(c))
        TrCC = float(np.sum(c ** 2))
        maxJJ = TrC + _two_sqrt2 * np.sqrt(TrCC)
        maxJCJ = TrCC + _two_sqrt2 * np.sqrt(np.sum(c ** 4))

        return JacobianTerms(TrC, TrCC, float(maxJJ), float(maxJCJ), np.diag(c) if keep_covariance else None)

    def _compute_compact_support(self, samples, keep_covariance):
        nr_of_samples = len(samples)
        if nr_of_samples == 0:
            return self._zero_terms(keep_covariance)

        dim = self.transform.dim
        nb = self.adapter.nr_of_parameters_per_dimension
        W = self.adapter.nr_of_weights
        points = samples.points
        block_scales = self.scales.reshape(dim, nb)

        def accumulate(chunk):
            rows = []
            cols = []
            vals = []
            for point in points[chunk[0]:chunk[1]]:
                weights, indices = self.adapter.weights(point)
                rows.append(np.repeat(indices, W))
                cols.append(np.tile(indices, W))
                vals.append(np.outer(weights, weights).reshape(-1))
            return sparse.coo_matrix((np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
                                     shape=(nb, nb)).tocsr()

        # unscaled second moment of the weights; block d of C is diag(1/s_d) B diag(1/s_d)
        B = self._reduce_chunks(accumulate, nr_of_samples, self._add) / nr_of_samples
        B = sparse.csr_matrix(B)
        B.sum_duplicates()
        Bc = B.tocoo()

        TrC = 0.
        TrCC = 0.
        diagB = B.diagonal()
        for d in range(dim):
            inv = 1. / block_scales[d]
            TrC += float(np.sum(diagB * inv ** 2))
            TrCC += float(np.sum((Bc.data * inv[Bc.row] * inv[Bc.col]) ** 2))

        def maxima(chunk):
            maxJJ = 0.
            maxJCJ = 0.
            for point in points[chunk[0]:chunk[1]]:
                weights, indices = self.adapter.weights(point)
                sub = B[indices][:, indices].toarray()
                inv2 = 1. / block_scales[:, indices] ** 2
                # J_j J_j^T and J_j C J_j^T are diagonal, one entry per spatial dimension
                r = np.sum(weights ** 2 * inv2, axis=1)
                u = weights * inv2
                v = np.einsum('dk,kl,dl->d', u, sub, u)
                maxJJ = max(maxJJ, np.sum(r) + _two_sqrt2 * np.sqrt(np.sum(r ** 2)))
                maxJCJ = max(maxJCJ, np.sum(v) + _two_sqrt2 * np.sqrt(np.sum(v ** 2)))
            return maxJJ, maxJCJ

        maxJJ, maxJCJ = self._reduce_chunks(maxima, nr_of_samples, self._maximum)
        maxJJ = float(maxJJ)
        maxJCJ = float(maxJCJ)

        covariance = None
        if keep_covariance:
            covariance = np.zeros((self.nr_of_parameters, self.nr_of_parameters))
            Bd = B.toarray()
            for d in range(dim):
                inv = 1. / block_scales[d]
                covariance[d * nb:(d + 1) * nb, d * nb:(d + 1) * nb] = Bd * np.outer(inv, inv)

        return JacobianTerms(TrC, TrCC, maxJJ, maxJCJ, covariance)
