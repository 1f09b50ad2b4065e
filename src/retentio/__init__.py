"""
Retentio - Retention Modelling and Adaptive Review Scheduling
=============================================================

Predicts how well a learner still remembers a practiced item and decides
when it should be practiced next.

Key Features:
    - Exponential forgetting curve with a long-term floor and a short
      consolidation plateau
    - Per-item tau estimates nudged after every review
    - Per-difficulty calibration of the learner's forgetting speed
    - Confidence-weighted blending of calibration, stability and recent
      performance signals, with a rapid-calibration phase for new learners
    - Hard safety clamps on every tau ([1, 180] days) and interval
      ([1, 365] days, at most 5 × tau)

Main Packages:
    - core: Configuration, errors, logging
    - core.forgetting: Curve, stores, integration manager and engine

Quick Start:
    from retentio.core.forgetting import create_retention_engine

    engine = create_retention_engine(learner_id="alice")
    decision = engine.recommend("scale-c-major", "Difficult", repetitions=12)

Version: 1.0.0
"""

__version__ = "1.0.0"
