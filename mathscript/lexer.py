from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from mathscript.errors import MSSymbolError, SourceLocation


@dataclass
class Token:
    type: str
    value: Union[str, float]
    line: int
    column: int
    offset: int
    end: int


RESERVED = {
    "true": "PRIMITIVE",
    "false": "PRIMITIVE",
}

SYMBOLS = {
    "+": "PLUS",
    "-": "MINUS",
    "*": "STAR",
    "/": "SLASH",
    "^": "CARET",
    "%": "PERCENT",
    "(": "LPAREN",
    ")": "RPAREN",
    "[": "LBRACKET",
    "]": "RBRACKET",
    "{": "LBRACE",
    "}": "RBRACE",
    "<": "LT",
    ">": "GT",
    "=": "EQUALS",
    ";": "SEMICOLON",
    ",": "COMMA",
    "?": "QUESTION",
    ":": "COLON",
    "!": "BANG",
    "&": "AMP",
    "|": "PIPE",
}

# Checked before SYMBOLS by looking one character ahead.
DOUBLE_SYMBOLS = {
    "//": "DSLASH",
    "&&": "AND",
    "||": "OR",
    "<=": "LTE",
    ">=": "GTE",
    "==": "EQ",
    "!=": "NEQ",
}

WHITESPACE = " \t\r"
DIGITS = "0123456789"


class Lexer:
    """Pull-based tokenizer; the parser asks for one token at a time."""

    def __init__(self, text: str, filename: str = "<string>") -> None:
        self.text = text
        self.filename = filename
        self.index = 0
        self.line = 1
        self.column = 1

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        while True:
            token = self.next_token()
            tokens.append(token)
            if token.type == "EOF":
                return tokens

    def next_token(self) -> Token:
        self._skip_whitespace()
        if self._eof:
            return Token("EOF", "", self.line, self.column, self.index, self.index)

        ch = self.text[self.index]
        line, col, start = self.line, self.column, self.index
        if ch == "\n":
            self.advance()
            return Token("NEWLINE", "\n", line, col, start, self.index)
        if ch in DIGITS:
            return self._consume_number()
        if self._is_identifier_start(ch):
            return self._consume_identifier()
        pair = ch + (self.peek(1) or "")
        if pair in DOUBLE_SYMBOLS:
            self.advance()
            self.advance()
            return Token(DOUBLE_SYMBOLS[pair], pair, line, col, start, self.index)
        if ch in SYMBOLS:
            self.advance()
            return Token(SYMBOLS[ch], ch, line, col, start, self.index)
        raise MSSymbolError(f"unexpected token: `{ch}`", location=self._location(line, col), rule="LEX")

    def peek_next_token(self) -> Token:
        """Return the next token without consuming it."""
        saved = self._save()
        try:
            return self.next_token()
        finally:
            self._restore(saved)

    def peek(self, steps: int = 0) -> Optional[str]:
        i = self.index + steps
        if 0 <= i < len(self.text):
            return self.text[i]
        return None

    def char_at(self, offset: int) -> Optional[str]:
        if 0 <= offset < len(self.text):
            return self.text[offset]
        return None

    def advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.index += 1

    def _consume_number(self) -> Token:
        line, col, start = self.line, self.column, self.index
        while not self._eof and self.text[self.index] in DIGITS:
            self.advance()
        # "1." and "1..2" keep the dot out of the literal
        nxt = self.peek(1)
        if self.peek() == "." and nxt is not None and nxt in DIGITS:
            self.advance()
            while not self._eof and self.text[self.index] in DIGITS:
                self.advance()
        literal = self.text[start:self.index]
        return Token("NUMBER", float(literal), line, col, start, self.index)

    def _consume_identifier(self) -> Token:
        line, col, start = self.line, self.column, self.index
        while not self._eof and self._is_identifier_part(self.text[self.index]):
            self.advance()
        value = self.text[start:self.index]
        return Token(RESERVED.get(value, "IDENT"), value, line, col, start, self.index)

    def _skip_whitespace(self) -> None:
        while not self._eof and self.text[self.index] in WHITESPACE:
            self.advance()

    def _is_identifier_start(self, ch: str) -> bool:
        return ch.isascii() and (ch.isalpha() or ch == "_")

    def _is_identifier_part(self, ch: str) -> bool:
        return ch.isascii() and (ch.isalnum() or ch == "_")

    def _location(self, line: int, column: int) -> SourceLocation:
        lines = self.text.splitlines()
        statement = lines[line - 1].strip() if 0 < line <= len(lines) else ""
        return SourceLocation(file=self.filename, line=line, column=column, statement=statement)

    def _save(self) -> Tuple[int, int, int]:
        return self.index, self.line, self.column

    def _restore(self, state: Tuple[int, int, int]) -> None:
        self.index, self.line, self.column = state

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.text)
