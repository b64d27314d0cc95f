from setuptools import setup, find_packages
from codecs import open
import os

__author__ = "The eddp developers"
__email__ = "eddp@users.noreply.github.com"

here = os.path.abspath(os.path.dirname(__file__))
package_name = 'eddp'
package_description = ('Generalised-potential feature vectors, analytic '
                       'forces and iterative building of EDDP ensembles')

# Get the long description from the README file
with open(os.path.join(here, 'README.md'), encoding='utf-8') as fp:
    long_description = fp.read()

# Get version number from the VERSION file
with open(os.path.join(here, 'src', package_name, 'VERSION')) as fp:
    version = fp.read().strip()

setup(
    name=package_name,
    version=version,
    description=package_description,
    long_description=long_description,
    long_description_content_type='text/markdown',
    author=__author__,
    author_email=__email__,
    license='MIT',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Science/Research',
        'Topic :: Scientific/Engineering :: Physics',
        'Topic :: Scientific/Engineering :: Chemistry',
        'Topic :: Scientific/Engineering :: Artificial Intelligence',
        'Programming Language :: Python :: 3'
    ],
    keywords=['materials science', 'machine learning',
              'interatomic potentials', 'structure search'],
    package_dir={'': 'src'},
    packages=find_packages('src'),
    package_data={package_name: ['VERSION',
                                 'formats/tests/fixtures/*']},
    scripts=[os.path.join("scripts", "eddp")],
    python_requires='>=3.8',
    install_requires=['numpy>=1.20.1',
                      'scipy>=1.6.2',
                      'pandas>=1.2.4',
                      'tables>=3.6.1',
                      'torch>=1.10',
                      'tqdm>=4.50',
                      'tenacity>=8.0'],
    extras_require={
        'test': ['pytest>=6.0'],
    }
)
