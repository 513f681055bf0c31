from setuptools import setup, find_packages

setup(
    name='himalaya-success',
    version='0.1.0',
    description='Bayesian model of Himalayan expedition member success',
    packages=find_packages(exclude=['tests', 'tests.*']),
    install_requires=[
        'numpy<2.4',
        'pandas>=2.0',
        'scipy',
        'pymc>=5.10',
        'pytensor',
        'arviz>=0.16,<1.0',
        'h5netcdf',
        'matplotlib',
        'seaborn',
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'himalaya-success=himalaya_success.pipeline:main',
        ],
    },
    python_requires='>=3.10',
)
