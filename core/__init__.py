"""
Shared infrastructure: errors, configuration, logging, cancellation,
read/write locking and fan-out task groups.
"""
