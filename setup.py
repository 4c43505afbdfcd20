from setuptools import setup

setup(
    name="zinbwave",
    version="0.1.0",
    description="Zero-inflated negative binomial based wanted variation extraction",
    license="GPL-3.0-or-later",
    python_requires=">=3.10",
    packages=[
        "zinbwave",
        "zinbwave/utils",
    ],
    install_requires=[
        "anndata",
        "numpy",
        "pandas",
        "patsy",
        "scikit-learn",
        "scipy",
        "statsmodels",
    ],
    extras_require={
        "test": ["pytest"],
        "doc": ["sphinx", "sphinx_rtd_theme"],
    },
)
