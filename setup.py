# torchxmatch setuptools configuration
from setuptools import setup, find_packages

setup(
    name="torchxmatch",
    version="0.1.0",
    description="k-d trees and aperture-based catalog cross-matching for PyTorch",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.9",
    install_requires=[
        "torch>=2.1",
        "numpy>=1.23",
        "psutil>=5.9",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "astropy>=5.0",
        ],
    },
)
