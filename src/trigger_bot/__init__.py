"""
Trigger Bot.

Evaluates users' standing trade triggers against live market metrics and
executes the swap once a trigger's condition holds, at most once per
activation.
"""

__version__ = "0.1.0"
