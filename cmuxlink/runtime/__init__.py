"""Runtime client interface and the cmux CLI adapter."""

from cmuxlink.runtime.base import ClientFactory, RuntimeCallError, RuntimeClient, is_not_found_error
from cmuxlink.runtime.cmuxctl import CmuxClient

__all__ = ["ClientFactory", "CmuxClient", "RuntimeCallError", "RuntimeClient", "is_not_found_error"]
