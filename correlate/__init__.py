"""
Correlate package: find issue keys in commit messages and attach them to changelog entries.
"""

from .linker import find_issue_keys_in_text
from .processors import ChangelogProcessor, JiraFilterChangelogProcessor, JIRA_ANNOTATION

__all__ = ["find_issue_keys_in_text", "ChangelogProcessor", "JiraFilterChangelogProcessor", "JIRA_ANNOTATION"]
