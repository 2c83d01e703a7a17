"""
Error taxonomy shared by every picturebook operation.

Each error carries the HTTP-equivalent status a request layer should surface.
"""

from __future__ import annotations


class PicturebookError(Exception):
    """Base class for all errors raised by the continuity engine."""

    http_status = 500


class NotFound(PicturebookError, LookupError):
    http_status = 404


class ProjectNotFound(NotFound):
    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project '{project_id}' not found.")
        self.project_id = project_id


class PageNotFound(NotFound):
    def __init__(self, project_id: str, page: int) -> None:
        super().__init__(f"Page {page} not found in project '{project_id}'.")
        self.project_id = project_id
        self.page = page


class Unauthorized(PicturebookError):
    http_status = 403


class InvalidInput(PicturebookError, ValueError):
    http_status = 400


class Locked(PicturebookError):
    """Write attempted against a finalized story or a locked character."""

    http_status = 409


class MalformedOutput(PicturebookError, ValueError):
    """The model returned text that could not be parsed into the required shape."""

    http_status = 502


class NoImage(PicturebookError, RuntimeError):
    """The model did not invoke the image tool."""

    http_status = 502


class StorageFailure(PicturebookError, RuntimeError):
    """Object storage or registry persistence failed."""

    http_status = 503
