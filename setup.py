from setuptools import setup, find_packages

setup(
    name='asgd',
    version='0.1.0',
    description='Adaptive stochastic gradient descent for image registration',
    long_description='Adaptive stochastic gradient descent with automatic estimation of the gain and step size settings, '
                     'based on numpy, scipy and pyTorch, for intensity based image registration',
    author='asgd developers',
    url='',
    license='Apache 2.0',
    packages=find_packages(exclude=['test']),
    package_data={'asgd': ['settings/*.json']},
    include_package_data=True,
    zip_safe=False,
    python_requires='>=3.7',
    install_requires=[
        'numpy>=1.17',
        'scipy>=1.3',
        'torch>=1.4',
        'termcolor',
        'matplotlib',
    ],
    extras_require={
        'tests': ['html-testRunner'],
    },
    classifiers=[
        'Environment :: Console',
        'Intended Audience :: Developers',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3']
)
