"""kidguard: trust-and-safety layer for a social platform for minors.

Text filtering, delegated image moderation, strike accounting with temporary
write suspension, resilient media uploads and signed URL resolution.
"""

__version__ = "0.1.0"
