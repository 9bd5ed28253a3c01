"""
Adaptive stochastic gradient descent with automatic parameter estimation for image registration.
"""
__version__ = '0.1.0'
