"""
Service layer for video downloads.

This module contains reusable functions for talking to yt-dlp,
independent of the database/Django models. These functions are used by:
- The API views + Huey background tasks (downloads/tasks.py)
- The management commands (downloads/management/commands/)
"""
