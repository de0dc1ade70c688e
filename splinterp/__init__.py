"""Interpreter for SPL, a small line-oriented language with one-letter names."""

from .spl import (
    Interpreter,
    SourceCursor,
    SymbolStack,
    SPLError,
    SPLSyntaxError,
    SPLNameError,
    SPLArithmeticError,
    SPLRuntimeError,
    main,
)
