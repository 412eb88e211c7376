"""
Error taxonomy for changelog runs.
Fatal errors carry the pipeline stage they came from so the CLI can print a single diagnostic.
"""


class ChangelogError(Exception):
    """Base class for all fatal changelog errors."""

    stage = "changelog"

    def __init__(self, message: str, stage: str = None):
        super().__init__(message)
        if stage:
            self.stage = stage


class RepositoryNotFoundError(ChangelogError):
    """Raised when the repository path does not reference a git repository."""

    stage = "repository"

    def __init__(self, repo_path: str):
        super().__init__(f"not a git repository: {repo_path}")
        self.repo_path = repo_path


class InvalidRevisionError(ChangelogError):
    """Raised when a from/to revision cannot be resolved to a commit."""

    stage = "revision"

    def __init__(self, revision: str, reason: str = ""):
        msg = f"cannot resolve revision '{revision}'"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)
        self.revision = revision


class ProcessorFatalError(ChangelogError):
    """Raised by a processor that cannot continue. Aborts the whole run."""

    stage = "processor"


class OutputSinkError(ChangelogError):
    """Raised when the rendered changelog cannot be written to its target."""

    stage = "output"


class ConfigError(ChangelogError):
    """Raised for unreadable or invalid configuration files."""

    stage = "config"


class RunCancelledError(ChangelogError):
    """Raised when a run was cancelled by the caller."""

    stage = "cancelled"


class IssueLookupFailure(Exception):
    """Non-fatal: a single issue could not be resolved. Never propagated as a run failure."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"{key}: {reason}")
        self.key = key
        self.reason = reason
