"""Executor side of the relay protocol — locator resolution and actions.

A static-document stand-in for the in-browser agent, used to exercise the
relay end to end and as the reference for the executor contract.
"""

from .actions import PageExecutor, Tab
from .resolver import load_document, require, resolve
from .server import ExecutorServer

__all__ = ["ExecutorServer", "PageExecutor", "Tab", "load_document", "require", "resolve"]
