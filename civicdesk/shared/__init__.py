"""
Shared Kernel Module
====================

Generic infrastructure used by every bounded context: structured logging
and the HTTP middleware stack.

DO NOT add complaint lifecycle rules to the shared kernel.
"""
