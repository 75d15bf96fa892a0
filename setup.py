"""
References:
- https://github.com/facebookresearch/pytorch3d: use `runpy` to read verison info.
- https://setuptools.pypa.io/en/latest/userguide/miscellaneous.html: MANIFEST.in
"""

import runpy

from setuptools import find_packages, setup


def get_version():
    version = runpy.run_path("nndist6d/version.py")
    return version["__version__"]


with open("README.md", "r") as fh:
    long_description = fh.read()

setup(
    name="nndist6d",
    version=get_version(),
    description="Bilateral nearest-neighbor distance between 6d point clouds for PyTorch",
    long_description=long_description,
    long_description_content_type="text/markdown",
    install_requires=[
        "torch>=1.12.1",
        "numpy",
    ],
    extras_require={"dev": ["pytest", "isort", "black"]},
    python_requires=">=3.8",
    packages=find_packages(exclude=["tests", "tests.*"]),
)
