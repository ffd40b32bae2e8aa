"""
Mneumonicore Backend - Real-time collaboration for workspaces and pages

Presence tracking, room coordination and update relay for collaborative editing.

Version: 1.0.0
"""

__version__ = "1.0.0"
