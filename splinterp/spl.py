#!/usr/bin/env python3
# spl.py - Line-oriented SPL interpreter driven by a replayable source cursor

import re
import sys
import string
import logging
import argparse
from dataclasses import dataclass
from typing import List, Optional, Union, Dict, Callable
from abc import ABC

from .runtime import createRuntimeStd

logger = logging.getLogger("splinterp")
logger.addHandler(logging.NullHandler())

LIMITS = {
    'max_call_depth': 256,
    'max_steps': 100_000,
}

UNDEFINED_POLICIES = ('error', 'zero')

EXIT_USAGE = 1
EXIT_SOURCE = 2
EXIT_SPL_ERROR = 3
EXIT_NO_MEMORY = 4

DIGITS = set(string.digits)
LETTERS = set(string.ascii_letters)
OPERATORS = {'+': 1, '-': 1, '*': 2, '/': 2}

# name(arg) with a one-character argument, nothing else
CALL_SHAPE = re.compile(r'[A-Za-z]\((.)\)')

# ==================== BASE COMPONENTS ====================

class InterpreterComponent(ABC):
    """Base class for all interpreter components."""

    def __init__(self, interpreter: 'Interpreter'):
        self.interpreter = interpreter

# ==================== EXCEPTION CLASSES ====================

class _CallSignal(Exception):
    def __init__(self, decl_line: int):
        self.decl_line = decl_line

class SPLError(Exception):
    def __init__(self, message: str, line: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.line = line

    def __str__(self):
        if self.line is None:
            return self.message
        return f"line {self.line}: {self.message}"

class SPLSyntaxError(SPLError):
    """A line is missing a token it needs, or a token has the wrong shape."""

class SPLNameError(SPLError):
    pass

class SPLArithmeticError(SPLError):
    pass

class SPLRuntimeError(SPLError):
    pass

# ==================== SOURCE CURSOR ====================

class SourceCursor:
    """Sequential reader over program lines with rewind and fast-forward.

    Line numbers are 1-based. ``position`` is the number of the line most
    recently returned by ``next_line`` (0 before the first read).
    """

    def __init__(self, lines: List[str]):
        self.lines = lines
        self.position = 0

    @classmethod
    def from_text(cls, text: str) -> 'SourceCursor':
        return cls(text.splitlines())

    @classmethod
    def from_file(cls, path: str) -> 'SourceCursor':
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_text(f.read())

    def __len__(self):
        return len(self.lines)

    def rewind(self):
        self.position = 0

    def advance(self, count: int):
        self.position = min(self.position + max(count, 0), len(self.lines))

    def seek(self, line: int):
        """Position the cursor so the next read returns ``line``."""
        self.rewind()
        self.advance(line - 1)

    def next_line(self) -> Optional[str]:
        if self.position >= len(self.lines):
            return None
        self.position += 1
        return self.lines[self.position - 1]

# ==================== BINDINGS ====================

class Binding(ABC):
    """Base class for every entry of the symbol/control stack."""
    pass

@dataclass
class Variable(Binding):
    name: str
    value: int

@dataclass
class FunctionDecl(Binding):
    name: str
    decl_line: int

@dataclass
class CallFrame(Binding):
    call_line: int

@dataclass
class BlockBegin(Binding):
    pass

@dataclass
class BlockEnd(Binding):
    pass

# ==================== SYMBOL / CONTROL STACK ====================

class SymbolStack:
    """One LIFO holding variables, function declarations and call history."""

    def __init__(self):
        self.items: List[Binding] = []

    def __len__(self):
        return len(self.items)

    def push(self, binding: Binding):
        self.items.append(binding)

    def pop(self) -> Optional[Binding]:
        if not self.items:
            return None
        return self.items.pop()

    def lookup(self, name: str) -> Optional[Union[Variable, FunctionDecl]]:
        for binding in reversed(self.items):
            if isinstance(binding, (Variable, FunctionDecl)) and binding.name == name:
                return binding
        return None

    def nearest_call_frame(self) -> Optional[CallFrame]:
        for binding in reversed(self.items):
            if isinstance(binding, CallFrame):
                return binding
        return None

    def open_blocks(self) -> int:
        """Blocks begun but not yet ended since the newest call frame."""
        depth = 0
        for binding in reversed(self.items):
            if isinstance(binding, CallFrame):
                break
            if isinstance(binding, BlockBegin):
                depth += 1
            elif isinstance(binding, BlockEnd):
                depth -= 1
        return depth

    def call_depth(self) -> int:
        return sum(1 for b in self.items if isinstance(b, CallFrame))

    def unwind_to_call_frame(self) -> Optional[CallFrame]:
        """Drop every binding down to and including the newest call frame."""
        if self.nearest_call_frame() is None:
            return None
        while True:
            binding = self.items.pop()
            if isinstance(binding, CallFrame):
                return binding

    def clear(self):
        self.items.clear()

# ==================== SESSION STATE ====================

@dataclass
class Session:
    entry_found: bool = False
    pending_return: Optional[int] = None
    last_result: int = 0
    call_argument: int = 0
    output: Optional[int] = None
    terminated: bool = False
    steps: int = 0

# ==================== STATEMENTS ====================

class Statement(ABC):
    """Base class for classified source lines."""
    pass

@dataclass
class BeginStmt(Statement):
    pass

@dataclass
class EndStmt(Statement):
    pass

@dataclass
class IntDecl(Statement):
    name: str
    value: int

@dataclass
class FunctionStmt(Statement):
    name: str
    param: Optional[str]

    @property
    def is_main(self) -> bool:
        return self.name == 'main'

@dataclass
class ExprStmt(Statement):
    text: str

@dataclass
class Ignored(Statement):
    text: str

# ==================== LINE PARSING ====================

def normalize_line(raw: str) -> str:
    return raw.replace('\t', ' ').rstrip('\r\n ')

class LineParser(InterpreterComponent):
    """Classifies one source line into a statement."""

    def __init__(self, interpreter: 'Interpreter'):
        super().__init__(interpreter)
        self.words: List[str] = []
        self.i = 0

    def parse(self, line: str) -> Statement:
        keyword = line.strip().lower()
        if keyword == 'begin':
            return BeginStmt()
        if keyword == 'end':
            return EndStmt()

        self.words = line.split()
        self.i = 0
        first = self.peek()
        if first is None:
            return Ignored(line)
        if first.lower() == 'int':
            self.i += 1
            return self.parse_int_decl()
        if first.lower() == 'function':
            self.i += 1
            return self.parse_function()
        if first.startswith('('):
            return ExprStmt(line)
        return Ignored(line)

    def parse_int_decl(self) -> IntDecl:
        name = self.expect("variable name after 'int'")
        if len(name) != 1 or name not in LETTERS:
            raise SPLSyntaxError(f"variable name must be one letter, got {name!r}")
        if self.peek() is None:
            return IntDecl(name, 0)
        if self.match('='):
            literal = self.expect("value after '='")
        else:
            literal = self.expect("value")
        if len(literal) != 1 or literal not in DIGITS:
            raise SPLSyntaxError(f"variable '{name}' needs a single digit value, got {literal!r}")
        return IntDecl(name, int(literal))

    def is_function_line(self, line: str) -> bool:
        words = line.split()
        return bool(words) and words[0].lower() == 'function'

    def parse_function(self) -> FunctionStmt:
        name = self.expect("function name after 'function'")
        param = self.peek()
        return FunctionStmt(name, param)

    def peek(self) -> Optional[str]:
        return self.words[self.i] if self.i < len(self.words) else None

    def match(self, word: str) -> Optional[str]:
        w = self.peek()
        if w is not None and w.lower() == word:
            self.i += 1
            return w
        return None

    def expect(self, what: str) -> str:
        w = self.peek()
        if w is None:
            raise SPLSyntaxError(f"Expected {what}")
        self.i += 1
        return w

# ==================== EXPRESSION EVALUATION ====================

Token = Union[int, str]

def priority(op: str) -> int:
    return OPERATORS.get(op, 0)

def apply_operator(op: str, left: int, right: int) -> int:
    if op == '+': return left + right
    if op == '-': return left - right
    if op == '*': return left * right
    if op == '/':
        if right == 0:
            raise SPLArithmeticError(f"Division by zero ({left} / {right})")
        # C semantics: truncate toward zero
        q = abs(left) // abs(right)
        return q if (left < 0) == (right < 0) else -q
    raise SPLSyntaxError(f"Unknown operator {op!r}")

class ExpressionEvaluator(InterpreterComponent):
    """Infix to postfix conversion with inline name resolution, then postfix evaluation."""

    def evaluate(self, text: str, line_no: int) -> int:
        def resolve(text: str, i: int, postfix: List[Token]) -> int:
            return self.resolve_identifier(text, i, line_no, postfix)

        result = self.evaluate_postfix(self.to_postfix(text, resolve))
        self.interpreter.session.last_result = result
        return result

    def check_shape(self, text: str) -> int:
        """Evaluate ``text`` with every identifier standing in as 1."""
        return self.evaluate_postfix(self.to_postfix(text, self._placeholder))

    def _placeholder(self, text: str, i: int, postfix: List[Token]) -> int:
        postfix.append(1)
        return i + 3 if CALL_SHAPE.match(text, i) else i

    def to_postfix(self, text: str, resolve: Callable[[str, int, List[Token]], int]) -> List[Token]:
        postfix: List[Token] = []
        ops: List[str] = []
        i = 0
        n = len(text)
        while i < n:
            ch = text[i]
            if ch in DIGITS:
                postfix.append(int(ch))
            elif ch == ')':
                if ops:
                    postfix.append(ops.pop())
            elif ch in OPERATORS:
                # one pop per operator: left associative on ties
                if ops and priority(ch) <= priority(ops[-1]):
                    postfix.append(ops.pop())
                ops.append(ch)
            elif ch in LETTERS:
                i = resolve(text, i, postfix)
            i += 1
        while ops:
            postfix.append(ops.pop())
        return postfix

    def resolve_identifier(self, text: str, i: int, line_no: int, postfix: List[Token]) -> int:
        """Emit the value of the identifier at ``text[i]``; return the index of its last character.

        Resolved values go into the postfix list as whole integers, so a
        value outside 0-9 stays one operand instead of one character.

        Reaching a function name with no return value pending starts the call
        and never returns.
        """
        session = self.interpreter.session
        name = text[i]
        binding = self.interpreter.symbols.lookup(name)

        if isinstance(binding, Variable):
            postfix.append(binding.value)
            return i
        if binding is None:
            postfix.append(self.undefined(name))
            return i

        if session.pending_return is None:
            self.call(text, i, line_no, binding)
        postfix.append(session.pending_return)
        logger.debug("line %d: substituted %d for %s(...)", line_no, session.pending_return, name)
        session.pending_return = None
        return i + 3

    def call(self, text: str, i: int, line_no: int, function: FunctionDecl):
        m = CALL_SHAPE.match(text, i)
        if not m:
            raise SPLSyntaxError(f"call to '{function.name}' must have the form {function.name}(x)")

        interp = self.interpreter
        if interp.symbols.call_depth() >= interp.max_call_depth:
            raise SPLRuntimeError(f"Call depth exceeded ({interp.max_call_depth})")

        interp.symbols.push(CallFrame(line_no))
        interp.session.call_argument = self.argument_value(m.group(1))
        logger.debug("line %d: call %s(%d) -> line %d",
                     line_no, function.name, interp.session.call_argument, function.decl_line)
        interp.cursor.seek(function.decl_line)
        raise _CallSignal(function.decl_line)

    def argument_value(self, arg: str) -> int:
        if arg in DIGITS:
            return int(arg)
        binding = self.interpreter.symbols.lookup(arg)
        if isinstance(binding, Variable):
            return binding.value
        return self.undefined(arg)

    def undefined(self, name: str) -> int:
        if self.interpreter.undefined == 'zero':
            logger.warning("Undefined name '%s' treated as 0", name)
            return 0
        raise SPLNameError(f"Undefined name '{name}'")

    def evaluate_postfix(self, postfix: List[Token]) -> int:
        calc: List[int] = []
        for tok in postfix:
            if isinstance(tok, int):
                calc.append(tok)
                continue
            right = calc.pop() if calc else 0
            left = calc.pop() if calc else 0
            calc.append(apply_operator(tok, left, right))
        if not calc:
            raise SPLSyntaxError("Empty expression")
        return calc[-1]

# ==================== EXECUTION ====================

class ExecutionDriver(InterpreterComponent):
    """Reads lines from the cursor and dispatches them until the program ends."""

    def run(self) -> Optional[int]:
        interp = self.interpreter
        session = interp.session
        cursor = interp.cursor

        while not session.terminated:
            raw = cursor.next_line()
            if raw is None:
                break
            line_no = cursor.position
            session.steps += 1
            if session.steps > interp.max_steps:
                raise SPLRuntimeError(f"Step limit exceeded ({interp.max_steps})", line_no)
            try:
                self.exec_line(normalize_line(raw), line_no)
            except _CallSignal:
                continue
            except SPLSyntaxError as e:
                if e.line is None:
                    e.line = line_no
                if interp.strict:
                    raise
                logger.debug("Skipping malformed %s", e)
            except SPLError as e:
                if e.line is None:
                    e.line = line_no
                raise
        return session.output

    def exec_line(self, line: str, line_no: int):
        session = self.interpreter.session
        parser = self.interpreter.parser
        # only function lines run before the entry point
        if not session.entry_found and not parser.is_function_line(line):
            return
        stmt = parser.parse(line)

        if isinstance(stmt, FunctionStmt):
            self.exec_function(stmt, line_no)
            return
        if isinstance(stmt, IntDecl):
            self.interpreter.symbols.push(Variable(stmt.name, stmt.value))
            logger.debug("line %d: int %s = %d", line_no, stmt.name, stmt.value)
        elif isinstance(stmt, BeginStmt):
            self.interpreter.symbols.push(BlockBegin())
        elif isinstance(stmt, EndStmt):
            self.exec_end(line_no)
        elif isinstance(stmt, ExprStmt):
            self.interpreter.evaluator.evaluate(stmt.text, line_no)

    def exec_function(self, stmt: FunctionStmt, line_no: int):
        interp = self.interpreter
        session = interp.session
        interp.symbols.push(FunctionDecl(stmt.name[0], line_no))
        if stmt.is_main:
            session.entry_found = True
            logger.debug("line %d: entry point found", line_no)
            return
        if not session.entry_found:
            return
        if stmt.param is None:
            raise SPLSyntaxError(f"function '{stmt.name}' needs a parameter name")
        interp.symbols.push(Variable(stmt.param[0], session.call_argument))
        logger.debug("line %d: enter %s with %s = %d",
                     line_no, stmt.name, stmt.param[0], session.call_argument)

    def exec_end(self, line_no: int):
        interp = self.interpreter
        session = interp.session
        interp.symbols.push(BlockEnd())
        if interp.symbols.open_blocks() > 0:
            return

        frame = interp.symbols.nearest_call_frame()
        if frame is None:
            session.output = session.last_result
            session.terminated = True
            interp.emit_output(session.last_result)
            return

        if session.pending_return is not None:
            raise SPLRuntimeError("A return value is already pending")
        session.pending_return = session.last_result
        interp.cursor.seek(frame.call_line)
        interp.symbols.unwind_to_call_frame()
        logger.debug("line %d: return %d to line %d", line_no, session.pending_return, frame.call_line)

# ==================== INTERPRETER MAIN CLASS ====================

class Interpreter:
    """Main interpreter class that coordinates all components."""

    def __init__(self, strict: bool = False, undefined: str = 'error',
                 max_call_depth: int = LIMITS['max_call_depth'],
                 max_steps: int = LIMITS['max_steps'],
                 runtime: Optional[Dict[str, Callable]] = None):
        if undefined not in UNDEFINED_POLICIES:
            raise ValueError(f"undefined must be one of {UNDEFINED_POLICIES}, got {undefined!r}")
        self.strict = strict
        self.undefined = undefined
        self.max_call_depth = max_call_depth
        self.max_steps = max_steps
        self.runtime = runtime if runtime is not None else self.create_runtime()

        self.cursor = SourceCursor([])
        self.symbols = SymbolStack()
        self.session = Session()
        self.parser = LineParser(self)
        self.evaluator = ExpressionEvaluator(self)
        self.driver = ExecutionDriver(self)

    def create_runtime(self) -> Dict:
        return createRuntimeStd()

    def reset(self, cursor: SourceCursor):
        self.cursor = cursor
        self.symbols.clear()
        self.session = Session()

    def emit_output(self, value: int):
        fn = self.runtime.get('output')
        if fn:
            fn(value)

    def run(self, cursor: SourceCursor) -> Optional[int]:
        """Execute a program; return its output value, or None if it never produced one."""
        self.reset(cursor)
        try:
            return self.driver.run()
        finally:
            self.symbols.clear()

    def run_source(self, source: str) -> Optional[int]:
        return self.run(SourceCursor.from_text(source))

    def run_file(self, path: str) -> Optional[int]:
        return self.run(SourceCursor.from_file(path))

    def check(self, cursor: SourceCursor) -> List[SPLSyntaxError]:
        """Parse every line without executing; return the malformed lines found."""
        errors: List[SPLSyntaxError] = []
        found_main = False
        for line_no, raw in enumerate(cursor.lines, start=1):
            try:
                stmt = self.parser.parse(normalize_line(raw))
                if isinstance(stmt, ExprStmt):
                    self.evaluator.check_shape(stmt.text)
                elif isinstance(stmt, FunctionStmt) and not stmt.is_main and stmt.param is None:
                    raise SPLSyntaxError(f"function '{stmt.name}' needs a parameter name")
            except SPLSyntaxError as e:
                e.line = line_no
                errors.append(e)
                continue
            except SPLArithmeticError:
                # literal division by zero is a runtime failure, not a syntax one
                pass
            if isinstance(stmt, FunctionStmt) and stmt.is_main:
                found_main = True
        if not found_main:
            errors.append(SPLSyntaxError("No 'function main' entry point found"))
        return errors

    def check_source(self, source: str) -> List[SPLSyntaxError]:
        return self.check(SourceCursor.from_text(source))

    def check_file(self, path: str) -> List[SPLSyntaxError]:
        return self.check(SourceCursor.from_file(path))

# ==================== MAIN EXECUTION ====================

class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        print("Incorrect arguments!", file=sys.stderr)
        self.print_usage(sys.stderr)
        print(f"{self.prog}: error: {message}", file=sys.stderr)
        sys.exit(EXIT_USAGE)

def build_arg_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(prog="spl", add_help=True,
                             description="Run an SPL program.")
    parser.add_argument("--strict", action="store_true",
                        help="Fail on malformed lines instead of skipping them.")
    parser.add_argument("--undefined", choices=UNDEFINED_POLICIES, default='error',
                        help="What an undefined identifier evaluates to (default: error).")
    parser.add_argument("--max-call-depth", type=int, default=LIMITS['max_call_depth'],
                        help="Maximum number of in-flight function calls.")
    parser.add_argument("--max-steps", type=int, default=LIMITS['max_steps'],
                        help="Maximum number of executed lines.")
    parser.add_argument("--check", action="store_true",
                        help="Parse only; do not execute.")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Log declarations, calls and returns.")
    parser.add_argument("source", help="SPL source file")
    return parser

def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    interpreter = Interpreter(strict=args.strict, undefined=args.undefined,
                              max_call_depth=args.max_call_depth,
                              max_steps=args.max_steps)
    try:
        cursor = SourceCursor.from_file(args.source)
    except (OSError, UnicodeDecodeError):
        print(f"Can't open {args.source}. Check the file please")
        return EXIT_SOURCE

    try:
        if args.check:
            errors = interpreter.check(cursor)
            for e in errors:
                print(f"Syntax error: {e}")
            if errors:
                return EXIT_SPL_ERROR
            print("Check succeeded.")
            return 0
        interpreter.run(cursor)
    except SPLError as e:
        print(f"{type(e).__name__}: {e}")
        return EXIT_SPL_ERROR
    except MemoryError:
        print("ERROR, Couldn't allocate memory...")
        return EXIT_NO_MEMORY
    return 0

if __name__ == "__main__":
    sys.exit(main())
