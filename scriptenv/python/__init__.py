"""Python interpreter requests and discovery."""

from .discovery import Interpreter, InterpreterFinder
from .request import PythonRequest, RequestKind

__all__ = [
    "Interpreter",
    "InterpreterFinder",
    "PythonRequest",
    "RequestKind",
]
