"""
Poisson Counts Example
======================

This example switches the outcome to a count (e.g. number of clinic
visits per year) and recovers rate ratios with Poisson regression.
"""

import mcepi
from mcepi.progress import TqdmReporter

print("=" * 60)
print("POISSON COUNTS EXAMPLE")
print("=" * 60)

# 1. Count outcome: reference_prevalence is a rate here
# 0.8 visits per year for a 50-year-old woman
model = mcepi.MCEpi(family="poisson")
model.set_baseline(reference_prevalence=0.8, reference_age=50)
model.set_effects(odds_ratio_sex=1.2, odds_ratio_age=1.3, age_delta=15)

dataset = model.simulate()
print(f"\nMean count: {dataset.observed_prevalence():.3f}")

# 2. Replicates with a tqdm progress bar (pip install tqdm)
model.set_replicates(300)
try:
    result = model.run_replicates(progress_callback=TqdmReporter(desc="replicates"))
except ImportError:
    result = model.run_replicates(progress_callback=True)

print(result.summary_frame())

# 3. Per-replicate estimates as a DataFrame
frame = result.to_frame()
print("\nFirst replicates:")
print(frame.head())
