"""
Pydantic data models package.

Contains the request and response models of the projection API.
"""

from .event import EventPayload, ProjectRequest, ProjectResponse, ErrorResponse

__all__ = [
    "EventPayload",
    "ProjectRequest",
    "ProjectResponse",
    "ErrorResponse",
]
