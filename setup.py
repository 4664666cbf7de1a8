from setuptools import setup, find_packages

setup(
    name="MCEpi",
    version="0.1.0",
    packages=find_packages(include=["mcepi", "mcepi.*"]),
    install_requires=[
        "numpy",
        "pandas",
        "scipy",
        "statsmodels",
        "scikit-learn",
        "joblib",
    ],
    extras_require={
        "progress": ["tqdm"],
        "test": ["pytest"],
    },
    python_requires=">=3.8",
    author="Paweł Lenartowicz",
    description="Monte Carlo simulate-and-recover for epidemiological regression models",
)
