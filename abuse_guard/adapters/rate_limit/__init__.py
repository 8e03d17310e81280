"""Rate limiting window algorithms.

Fixed and sliding window counters share one interface and one counting store
abstraction, so endpoints pick an algorithm per configuration without the
engine caring which one runs.
"""
