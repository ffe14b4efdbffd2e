"""
Irrigation dispatch worker.

Polls the shared document store for time schedules and soil-moisture
thresholds, queues watering jobs durably and runs them one at a time.
"""

__version__ = "1.0.0"
