"""
Monetization Engine

Human-gated monetization changes for a content site:
1. Queues opportunities raised by detectors for human approval
2. Hands approved actions to executors and tracks completion
3. Measures real before/after impact of each executed action
4. Scores the original revenue prediction against the measured result
"""

__version__ = "0.1.0"
