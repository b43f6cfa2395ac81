"""Shared enumerations used across cmuxlink."""

from __future__ import annotations

from enum import IntEnum, StrEnum

# -- Errors ------------------------------------------------------------------


class ErrorCode(StrEnum):
    """Stable symbolic codes returned to callers.  Closed set."""

    CMUX_CAPABILITY_MISSING = "cmux_capability_missing"
    CMUX_CREATE_FAILED = "cmux_create_failed"
    CMUX_RENAME_FAILED = "cmux_rename_failed"
    CMUX_SELECT_FAILED = "cmux_select_failed"
    CMUX_IDENTIFY_FAILED = "cmux_identify_failed"
    CMUX_NOT_MAPPED = "cmux_not_mapped"
    CMUX_AMBIGUOUS_TARGET = "cmux_ambiguous_target"
    CMUX_RUNTIME_UNAVAILABLE = "cmux_runtime_unavailable"
    CMUX_LIST_FAILED = "cmux_list_failed"
    STATE_WRITE_FAILED = "state_write_failed"
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_RESTORE_PARTIAL = "session_restore_partial"
    WORKSPACE_NOT_FOUND = "workspace_not_found"
    WORKSPACE_NOT_ACTIVE = "workspace_not_active"
    NON_INTERACTIVE_SELECTION_REQUIRED = "non_interactive_selection_required"
    INVALID_ARGUMENT = "invalid_argument"
    INTERNAL_ERROR = "internal_error"


# -- Warnings ----------------------------------------------------------------


class WarningCode(StrEnum):
    """Codes attached to non-fatal warnings in save / resume results."""

    SURFACE_LIST_FAILED = "surface_list_failed"
    SURFACE_CAPTURE_FAILED = "surface_capture_failed"
    SCREEN_CAPTURE_FAILED = "screen_capture_failed"
    BROWSER_STATE_SAVE_FAILED = "browser_state_save_failed"
    STATE_WRITE_FAILED = "state_write_failed"
    FOCUS_RESTORE_FAILED = "focus_restore_failed"
    BROWSER_STATE_RESTORE_FAILED = "browser_state_restore_failed"


# -- Reconciliation ----------------------------------------------------------


class ProbeStatus(IntEnum):
    """Outcome of a single ``identify`` probe against a runtime workspace."""

    NOT_FOUND = -1
    INDETERMINATE = 0
    LIVE = 1
