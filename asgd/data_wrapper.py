import numpy as np
import torch

from .config_parser import CUDA_ON

# ----------------- global setting ----------------------------------------
USE_CUDA = CUDA_ON and torch.cuda.is_available()

# parameters and gradients are always handled in double precision
DTYPE = torch.float64


# ------------------  AdaptVal --------------------------
def AdaptVal(x):
    """Moves a tensor to the device the optimizer state lives on."""
    if USE_CUDA:
        return x.cuda()
    return x


def MyTensor(v):
    """
    Creates a (copied) double precision parameter vector on the optimizer device

    :param v: numpy array, list or tensor
    :return: 1D torch tensor
    """
    if isinstance(v, torch.Tensor):
        t = v.detach().clone().to(DTYPE)
    else:
        t = torch.from_numpy(np.array(v, dtype='float64'))
    return AdaptVal(t.reshape(-1))
