"""MathScript entry point and REPL wiring."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional, Union

from mathscript.interpreter import DEFAULT_MAX_DEPTH, Interpreter, TracebackFormatter

PROMPT_COLOR = "\x1b[38;2;153;221;255m"
RESET_COLOR = "\033[0m"


def _emit(interpreter: Interpreter, outcome: Union[List[str], str], *, verbose: bool, traceback_json: bool) -> int:
    formatter = TracebackFormatter(interpreter)
    if isinstance(outcome, str):
        print(outcome, file=sys.stderr)
        status = 1
    else:
        for text in outcome:
            print(text)
        status = 0
    for error in interpreter.errors:
        if verbose:
            print(formatter.format_text(error, verbose=True), file=sys.stderr)
        if traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
    return status


def run_repl(verbose: bool, max_depth: int = DEFAULT_MAX_DEPTH) -> int:
    print(f"{PROMPT_COLOR}MathScript{RESET_COLOR} REPL. Lines ending in '{{' start a block, blank line runs it; ':reset' clears the session.")
    interpreter = Interpreter(filename="<string>", verbose=verbose, max_depth=max_depth)
    buffer: List[str] = []

    while True:
        prompt = f"{PROMPT_COLOR}>>>{RESET_COLOR} " if not buffer else f"{PROMPT_COLOR}..>{RESET_COLOR} "
        try:
            line = input(prompt)
        except EOFError:
            print()
            break

        stripped = line.strip()
        if not buffer:
            if stripped == "":
                continue
            if stripped == ":reset":
                interpreter.reset()
                print("session cleared")
                continue
            if stripped.endswith("{"):
                buffer.append(line)
                continue
            source_text = line
        elif stripped != "":
            buffer.append(line)
            continue
        else:
            source_text = "\n".join(buffer)
            buffer.clear()

        _emit(interpreter, interpreter.interpret(source_text), verbose=verbose, traceback_json=False)
    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="MathScript matrix expression interpreter")
    parser.add_argument("program", nargs="?", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Print tracebacks with env snapshots for failed statements")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON tracebacks for failed statements")
    parser.add_argument("--max-depth", type=int, default=DEFAULT_MAX_DEPTH, help="Maximum nesting of user function calls")
    args = parser.parse_args(argv)

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return 1
        return run_repl(verbose=args.verbose, max_depth=args.max_depth)

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except OSError as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return 1

    interpreter = Interpreter(filename=filename, verbose=args.verbose, max_depth=args.max_depth)
    outcome = interpreter.interpret(source_text)
    return _emit(interpreter, outcome, verbose=args.verbose, traceback_json=args.traceback_json)


if __name__ == "__main__":
    raise SystemExit(run_cli())
