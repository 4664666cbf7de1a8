"""Statistical analysis and data generation modules."""

from . import distributions as distributions
