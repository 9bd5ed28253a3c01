"""
Stochastic gradient descent with a decaying gain sequence and an adaptive step multiplier, as a
pytorch optimizer. The gradient is not obtained by back-propagation: the closure evaluates the cost
function and stores its derivative in ``p.grad``.
"""
import torch
from torch.optim import Optimizer

from . import utils


class AdaptiveStepSGD(Optimizer):
    """
    Iterates :math:`\\mu_{k+1} = \\mu_k - a(k) s(t_k) g_k` with the gain :math:`a(k)` and step multiplier
    :math:`s(t)` of a :class:`~asgd.parameter_estimation.SettingsRecord`. The time starts at the initial
    time and afterwards accumulates the cosine between the current and the previous gradient, but never
    drops below zero: consistent search directions increase the step, oscillating ones reduce it.
    Hence during the iterations the multiplier is bounded below by :math:`s(0) = (f_{min}+f_{max})/2`, and by
    :math:`s(t_0)` in the first iteration; SigmoidMin only acts through this midpoint.
    """

    def __init__(self, params, settings, use_adaptive_step_sizes=True, initial_time=0.):
        """
        :param params: iterable of parameter tensors
        :param settings: SettingsRecord with gain and sigmoid settings
        :param use_adaptive_step_sizes: if False the multiplier is always fmax
        :param initial_time: time of the first iteration; needs to be at least 0
        """
        if initial_time < 0.:
            raise ValueError('AdaptiveStepSGD: the initial time needs to be at least 0, got ' + str(initial_time))
        defaults = dict(settings=settings, use_adaptive_step_sizes=use_adaptive_step_sizes, initial_time=initial_time)
        super(AdaptiveStepSGD, self).__init__(params, defaults)

    def step(self, closure=None):
        """
        Performs a single optimization step

        :param closure: evaluates the cost, sets the gradients and returns the cost value
        :return: value returned by the closure
        """
        loss = None
        if closure is not None:
            loss = closure()

        for group in self.param_groups:
            settings = group['settings']
            adaptive = group['use_adaptive_step_sizes']

            for p in group['params']:
                if p.grad is None:
                    continue
                grad = p.grad.detach()
                state = self.state[p]

                k = state.get('step', 0)
                if adaptive:
                    if k == 0:
                        t = group['initial_time']
                    else:
                        t = max(0., state['time'] + utils.cosine_of_angle(utils.t2np(grad).reshape(-1),
                                                                          utils.t2np(state['previous_gradient']).reshape(-1)))
                    multiplier = settings.sigmoid(t)
                else:
                    t = group['initial_time']
                    multiplier = settings.fmax

                gain = settings.gain(k)
                with torch.no_grad():
                    p.add_(grad, alpha=-gain * multiplier)

                state['previous_gradient'] = grad.clone()
                state['time'] = t
                state['step'] = k + 1
                state['gain'] = gain
                state['step_multiplier'] = multiplier

        return loss

    def _first_state(self):
        for group in self.param_groups:
            for p in group['params']:
                if 'step' in self.state[p]:
                    return self.state[p]
        return None

    def last_step_size_taken(self):
        """
        :return: a(k) s(t_k) of the last step; None before the first step
        """
        state = self._first_state()
        if state is None:
            return None
        return state['gain'] * state['step_multiplier']

    def get_gain(self):
        state = self._first_state()
        return None if state is None else state['gain']

    def get_step_multiplier(self):
        state = self._first_state()
        return None if state is None else state['step_multiplier']

    def get_time(self):
        state = self._first_state()
        return None if state is None else state['time']
