"""
Input validation functions for trilium_sync.

Provides validation for note titles and for every user-controlled string
that ends up as an argument to an external ``git`` process. Validators
return ``(is_valid, error_message)`` tuples; callers decide whether a
failure raises. Nothing here rewrites or strips its input: a value is
either accepted as is or rejected.
"""

import re

# Characters that must never reach a subprocess argument list
_UNSAFE_PATH_CHARS = re.compile(r"[;|&$`<>(){}\[\]]")
_UNSAFE_MESSAGE_CHARS = re.compile(r"[`$;|&<>\x00]")
_BRANCH_PATTERN = re.compile(r"^[A-Za-z0-9._/-]+$")
_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


# ---------------------------------------------------------------------------
# Error message formatting helpers
# ---------------------------------------------------------------------------


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Note title")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


# ---------------------------------------------------------------------------
# Note store inputs
# ---------------------------------------------------------------------------


def validate_note_title(title: str) -> tuple[bool, str]:
    """
    Validate a note title before it is sent to the note store.

    Validation rules:
        - Cannot be empty or whitespace-only
        - Cannot contain line breaks
    """
    if not title or not title.strip():
        return (
            False,
            format_validation_error("Note title", "cannot be empty"),
        )
    if "\n" in title or "\r" in title:
        return (
            False,
            format_validation_error(
                "Note title", "cannot contain line breaks"
            ),
        )
    return (True, "")


def validate_content(
    content: str, max_size: int = 100_000_000
) -> tuple[bool, str]:
    """
    Validate note content size.

    Empty content is allowed; Trilium stores empty notes.

    Args:
        content: The content to validate
        max_size: Maximum size in bytes

    Returns:
        Tuple of (is_valid, error_message).
    """
    content_bytes = len(content.encode("utf-8"))
    if content_bytes > max_size:
        return (
            False,
            format_validation_error(
                "Content", f"exceeds maximum size of {max_size} bytes"
            ),
        )
    return (True, "")


# ---------------------------------------------------------------------------
# Subprocess arguments
# ---------------------------------------------------------------------------


def validate_git_path(path: str) -> tuple[bool, str]:
    """
    Validate a repository-relative file path passed to ``git add``.

    Validation rules:
        - Cannot be empty
        - Cannot contain shell metacharacters ``; | & $ ` < > ( ) { } [ ]``
        - Cannot contain NUL or line breaks
        - Cannot start with ``-`` or ``~``, or be absolute
        - Cannot contain a ``..`` segment
    """
    if not path:
        return (False, format_validation_error("File path", "cannot be empty"))
    if _UNSAFE_PATH_CHARS.search(path):
        return (
            False,
            format_validation_error(
                "File path", f"contains dangerous characters: {path}"
            ),
        )
    if "\x00" in path or "\n" in path or "\r" in path:
        return (
            False,
            format_validation_error(
                "File path", "cannot contain control characters"
            ),
        )
    if path.startswith(("-", "~", "/")):
        return (
            False,
            format_validation_error(
                "File path", f"must be repository-relative: {path}"
            ),
        )
    if ".." in path.replace("\\", "/").split("/"):
        return (
            False,
            format_validation_error("File path", "cannot contain '..'"),
        )
    return (True, "")


def validate_branch_name(name: str) -> tuple[bool, str]:
    """
    Validate a git branch or remote name.

    Only ``[A-Za-z0-9._/-]`` is accepted; a leading ``-`` and ``..`` are
    rejected as well.
    """
    if not name:
        return (False, format_validation_error("Branch name", "cannot be empty"))
    if not _BRANCH_PATTERN.match(name):
        return (
            False,
            format_validation_error(
                "Branch name", f"contains invalid characters: {name}"
            ),
        )
    if name.startswith("-") or ".." in name:
        return (
            False,
            format_validation_error("Branch name", f"is not allowed: {name}"),
        )
    return (True, "")


def validate_commit_message(message: str) -> tuple[bool, str]:
    """Validate a commit message (rejects backticks, ``$`` and shell operators)."""
    if not message or not message.strip():
        return (
            False,
            format_validation_error("Commit message", "cannot be empty"),
        )
    if _UNSAFE_MESSAGE_CHARS.search(message):
        return (
            False,
            format_validation_error(
                "Commit message", "contains dangerous characters"
            ),
        )
    return (True, "")


def validate_author_name(name: str) -> tuple[bool, str]:
    """Validate a commit author name."""
    if not name or not name.strip():
        return (
            False,
            format_validation_error("Author name", "cannot be empty"),
        )
    if _UNSAFE_MESSAGE_CHARS.search(name) or "\n" in name or "\r" in name:
        return (
            False,
            format_validation_error(
                "Author name", "contains dangerous characters"
            ),
        )
    return (True, "")


def validate_author_email(email: str) -> tuple[bool, str]:
    """Validate a commit author e-mail address."""
    if not _EMAIL_PATTERN.match(email or ""):
        return (
            False,
            format_validation_error(
                "Author email", f"is not a valid address: {email}"
            ),
        )
    if _UNSAFE_MESSAGE_CHARS.search(email):
        return (
            False,
            format_validation_error(
                "Author email", "contains dangerous characters"
            ),
        )
    return (True, "")
