"""Setup configuration for genoff package"""

from setuptools import setup, find_packages

setup(
    name="genoff",
    version="0.1.0",
    author="genoff Development Team",
    description="Genomic offset analysis with latent factor mixed models (LFMM2) in pure Python",
    long_description=open("README.md").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    packages=find_packages(include=["genoff", "genoff.*"]),
    install_requires=[
        "numpy>=1.19.0",
        "scipy>=1.6.0",
        "pandas>=1.2.0",
        "scikit-learn>=0.24.0",
        "tqdm>=4.60.0",
    ],
    extras_require={
        # Test suite (statsmodels serves as the OLS reference)
        "test": [
            "pytest>=6.0",
            "statsmodels>=0.12.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "genoff-offset=genoff.cli.run_offset:main",
        ],
    },
    python_requires=">=3.7",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
    ],
)
