"""
HTTP adaptation of the leaky bucket.

Wraps individual handlers or whole applications so that every request
spends one drop from its client's bucket.
"""
