"""
Soulence Core -- Engagement Scoring & Crisis Alerting
=====================================================

The decision core of the Soulence wellness platform.  Normalizes behavioral
signals and mood entries, scores session engagement, detects low-mood crisis
patterns, and drives an alert lifecycle that notifies a user's trusted
contacts with retry and de-duplication.

DISCLAIMER: This software is not a medical device.  Crisis detection is a
heuristic trigger for human escalation, not a clinical judgment.  Every
alert is meant to be followed up by a human (therapist, parent, or crisis
team).
"""

__version__ = "0.1.0"
