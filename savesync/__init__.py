"""
Save synchronization for game save slots.

Keeps a local slot store and a cloud slot store in step, one numbered
slot at a time.
"""

__version__ = "0.1.0"
