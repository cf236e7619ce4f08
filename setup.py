"""
Setup script for the Pitch-Plunge GP Regression package.
"""

from setuptools import find_packages, setup

if __name__ == "__main__":
    setup(
        name="pitchplunge-gp",
        version="0.1.0",
        packages=find_packages(include=["pitchplunge_gp", "pitchplunge_gp.*"]),
        python_requires=">=3.9",
        install_requires=[
            "numpy>=1.21.0",
            "scipy>=1.7.0",
            "matplotlib>=3.4.0",
            "pyyaml>=6.0",
        ],
        extras_require={
            "dev": [
                "pytest>=7.0",
                "pytest-cov>=4.0",
                "black>=23.0",
                "isort>=5.0",
                "mypy>=1.0",
            ],
        },
        author="Pitch-Plunge GP Team",
        description="Gaussian process regression with noisy inputs for a pitch-plunge wing section",
        long_description=open("README.md").read(),  # noqa: SIM115
        long_description_content_type="text/markdown",
        license="MIT",
        classifiers=[
            "Development Status :: 4 - Beta",
            "Intended Audience :: Science/Research",
            "License :: OSI Approved :: MIT License",
            "Programming Language :: Python :: 3",
            "Topic :: Scientific/Engineering",
        ],
    )
