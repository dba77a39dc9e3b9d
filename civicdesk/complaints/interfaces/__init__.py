"""
Complaint Interfaces Layer
==========================

Interface adapters (controllers) for the complaint lifecycle module.

Contains:
- Controllers: FastAPI route handlers

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from civicdesk.complaints.interfaces.controllers import complaints_router

__all__ = ["complaints_router"]
