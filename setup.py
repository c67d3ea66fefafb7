from setuptools import setup, find_packages
from pathlib import Path
import os

packages = [
    package
    for package in find_packages(include=["klbpyramid", "klbpyramid.*"])
]

requirements = ['numpy>=1.24',
                'click>=8.0.1',
                'pydantic>=2.0',
                'typing_extensions',
                'tqdm>=4.60']

extras = {
        'klb': ['pyklb'],
        'test': ['pytest>=7.0',
                 'hypothesis>=6.60'],
}

dir_ = Path(__file__).parent
with open(os.path.join(dir_, 'README.md')) as file:
        long_description = file.read()

setup(  name             = 'klbpyramid',
        version          = '0.1.0',
        description      = 'multi-resolution pyramids for KLB microscopy datasets',
        long_description = long_description,
        long_description_content_type = 'text/markdown',
        packages         = packages,
        include_package_data = True,
        python_requires  = '>=3.10',
        install_requires = requirements,
        extras_require   = extras,
        entry_points     = {
                'console_scripts': ['klb-pyramid=klbpyramid.cli.cli:cli'],
        },
        classifiers = [
                'Development Status :: 4 - Beta',
                'Intended Audience :: Science/Research',
                'Programming Language :: Python :: 3 :: Only',
                'Topic :: Scientific/Engineering',
                'Topic :: Scientific/Engineering :: Image Processing',
                'Topic :: Scientific/Engineering :: Bio-Informatics',
                'Operating System :: POSIX',
                'Operating System :: Unix',
                'Operating System :: MacOS',
                'Operating System :: Microsoft :: Windows',
        ]
     )
