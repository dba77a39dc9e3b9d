"""
Civic Desk
==========

Complaint lifecycle engine for a municipal service desk.
"""

__version__ = "1.0.0"
