"""Exception types shared across newsdesk."""

from __future__ import annotations


class NewsdeskError(Exception):
    """Base class for every error raised by newsdesk."""


class ConfigurationError(NewsdeskError):
    """A required setting or credential is missing."""


class InvalidInputError(NewsdeskError):
    """The caller supplied an unusable value."""


class NotFoundError(NewsdeskError):
    pass


class ProjectNotFoundError(NotFoundError):
    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project {project_id} not found")
        self.project_id = project_id


class ArchivedProjectNotFoundError(NotFoundError):
    def __init__(self, project_id: str) -> None:
        super().__init__(f"Archived project file not found for project {project_id}")
        self.project_id = project_id


class VerificationError(NewsdeskError):
    """A copied resource could not be found in its destination folder."""


class SchemaError(NewsdeskError):
    """A project document is malformed or uses an unsupported schema."""


class GoogleApiError(NewsdeskError):
    """A Google REST endpoint returned an error response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DriveError(GoogleApiError):
    """The remote object store rejected a request."""


class DriveNotFoundError(DriveError, NotFoundError):
    pass


class MissingSheetError(DriveNotFoundError):
    """A project's sheet is gone and no archived copy of it exists."""


class SheetsError(GoogleApiError):
    pass


class WorkflowError(NewsdeskError):
    pass


class ArticleSearchError(NewsdeskError):
    pass
