from __future__ import annotations
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Tuple, Union

from mathscript.errors import MSMatrixError, MSParsingError, MSSyntaxError, SourceLocation
from mathscript.lexer import DOUBLE_SYMBOLS, SYMBOLS, WHITESPACE, Lexer, Token
from mathscript.values import DeferredMatrix, Logical, Numeric, Value


SCOPE_GLOBAL = "global"
SCOPE_PROCEDURE = "procedure"

# Tightest binding first. The flag marks levels whose operators are only
# binary when the surrounding spacing says so (see Parser._reads_as_binary).
PRECEDENCE_LEVELS: Tuple[Tuple[FrozenSet[str], bool], ...] = (
    (frozenset({"CARET"}), False),
    (frozenset({"PERCENT"}), False),
    (frozenset({"STAR", "SLASH", "DSLASH"}), False),
    (frozenset({"PLUS", "MINUS"}), True),
    (frozenset({"AMP", "PIPE"}), False),
    (frozenset({"LT", "GT", "EQ", "NEQ", "LTE", "GTE"}), False),
    (frozenset({"AND"}), False),
    (frozenset({"OR"}), False),
)

UNARY_OPERATORS = frozenset({"PLUS", "MINUS", "BANG"})

_TOKEN_NAMES = {kind: text for text, kind in {**SYMBOLS, **DOUBLE_SYMBOLS}.items()}
_TOKEN_NAMES.update({"EOF": "eof", "NEWLINE": "newline", "NUMBER": "number", "IDENT": "identifier"})


@dataclass
class Node:
    location: SourceLocation


@dataclass
class Compound(Node):
    statements: List[Node]


@dataclass
class Empty(Node):
    pass


@dataclass
class Variable(Node):
    name: str
    scope: str


@dataclass
class Assign(Node):
    target: Variable
    value: Node


@dataclass
class ProcedureCall(Node):
    name: str
    args: List[Node]


@dataclass
class ProcedureDefinition(Node):
    name: str
    params: List[str]
    body: List[Node]


@dataclass
class BinaryOperator(Node):
    left: Node
    operator: Token
    right: Node


@dataclass
class UnaryOperator(Node):
    operator: Token
    operand: Node


@dataclass
class Ternary(Node):
    condition: Node
    if_true: Node
    if_false: Node


@dataclass
class SingleValue(Node):
    value: Union[Value, DeferredMatrix]


COMPUTABLE_NODES = (BinaryOperator, UnaryOperator, Ternary, Variable, SingleValue, ProcedureCall)


def is_computable_node(node: Node) -> bool:
    return isinstance(node, COMPUTABLE_NODES)


class Parser:
    def __init__(self, lexer: Lexer) -> None:
        self.lexer = lexer
        self.filename = lexer.filename
        self.source_lines = lexer.text.splitlines()
        self.current: Token = lexer.next_token()

    def parse(self) -> Compound:
        location = self._location_from_token(self.current)
        statements = self._parse_statement_list(SCOPE_GLOBAL)
        self._eat("EOF")
        return Compound(location=location, statements=statements)

    # Statements

    def _parse_statement_list(self, scope: str) -> List[Node]:
        self._skip_newlines()
        statements = self._parse_statement(scope)
        while self.current.type == "NEWLINE":
            self._skip_newlines()
            statements.extend(self._parse_statement(scope))
        if self.current.type == "IDENT":
            raise MSSyntaxError("unexpected identifier", location=self._location_from_token(self.current))
        return statements

    def _parse_statement(self, scope: str) -> List[Node]:
        token = self.current
        if token.type == "IDENT":
            if self.lexer.peek_next_token().type == "EQUALS":
                return self._parse_assignment(scope)
            return [self._parse_expression(True, scope)]
        if token.type == "EOF":
            return []
        return [self._parse_expression(True, scope)]

    def _parse_assignment(self, scope: str) -> List[Node]:
        assignments: List[Node] = []
        while True:
            target = self._parse_variable(scope)
            self._eat("EQUALS")
            value = self._parse_expression(True, scope)
            assignments.append(Assign(location=target.location, target=target, value=value))
            if self.current.type != "COMMA":
                return assignments
            self._eat("COMMA")

    def _parse_definition(self, header: ProcedureCall, scope: str) -> ProcedureDefinition:
        if scope == SCOPE_PROCEDURE:
            raise MSParsingError("nested functions aren't supported!", location=header.location)
        self._eat("EQUALS")
        params: List[str] = []
        for arg in header.args:
            if not isinstance(arg, Variable):
                raise MSParsingError("cannot define a function with non-variable parameters", location=header.location)
            params.append(arg.name)
        if self.current.type == "LBRACE":
            self._eat("LBRACE")
            body = self._parse_statement_list(SCOPE_PROCEDURE)
            self._skip_newlines()
            self._eat("RBRACE")
        else:
            body = [self._parse_expression(True, SCOPE_PROCEDURE)]
        body = [node for node in body if not isinstance(node, Empty)]
        if not body:
            raise MSParsingError(f"no definition for function '{header.name}'", location=header.location)
        return ProcedureDefinition(location=header.location, name=header.name, params=params, body=body)

    # Expressions

    def _parse_expression(self, ignore_ws: bool, scope: str, closing: Optional[str] = None) -> Node:
        node = self._parse_level(len(PRECEDENCE_LEVELS) - 1, ignore_ws, scope, closing)
        if self.current.type == "QUESTION":
            self._eat("QUESTION")
            if_true = self._parse_expression(ignore_ws, scope, closing)
            self._eat("COLON")
            if_false = self._parse_expression(ignore_ws, scope, closing)
            return Ternary(location=node.location, condition=node, if_true=if_true, if_false=if_false)
        return node

    def _parse_level(self, level: int, ignore_ws: bool, scope: str, closing: Optional[str]) -> Node:
        if level < 0:
            return self._parse_factor(scope)
        operators, whitespace_sensitive = PRECEDENCE_LEVELS[level]
        node = self._parse_level(level - 1, ignore_ws, scope, closing)
        while self.current.type in operators and self.current.type != closing:
            operator = self.current
            if whitespace_sensitive and not ignore_ws and not self._reads_as_binary(operator):
                break
            self._eat(operator.type)
            right = self._parse_level(level - 1, ignore_ws, scope, closing)
            node = BinaryOperator(location=node.location, left=node, operator=operator, right=right)
        return node

    def _reads_as_binary(self, operator: Token) -> bool:
        after = self.lexer.char_at(operator.end)
        before = self.lexer.char_at(operator.offset - 1)
        spaced_after = after is not None and after in WHITESPACE
        spaced_before = before is not None and before in WHITESPACE
        return spaced_after or not spaced_before

    def _parse_factor(self, scope: str) -> Node:
        token = self.current
        location = self._location_from_token(token)
        if token.type in UNARY_OPERATORS:
            self._eat(token.type)
            return UnaryOperator(location=location, operator=token, operand=self._parse_factor(scope))
        if token.type == "NUMBER":
            self._eat("NUMBER")
            return SingleValue(location=location, value=Numeric(float(token.value)))
        if token.type == "LPAREN":
            self._eat("LPAREN")
            node = self._parse_expression(True, scope)
            self._eat("RPAREN")
            return node
        if token.type == "LBRACKET":
            return self._parse_matrix(scope)
        if token.type == "LT":
            return self._parse_vector(scope)
        if token.type == "PRIMITIVE":
            self._eat("PRIMITIVE")
            return SingleValue(location=location, value=Logical(token.value == "true"))
        if token.type == "IDENT":
            # A call needs "(" directly after the name; "f (x)" is a variable.
            if self.lexer.char_at(token.end) == "(":
                call = self._parse_call(scope)
                if self.current.type == "EQUALS":
                    return self._parse_definition(call, scope)
                return call
            return self._parse_variable(scope)
        return Empty(location=location)

    def _parse_variable(self, scope: str) -> Variable:
        token = self._eat("IDENT")
        return Variable(location=self._location_from_token(token), name=str(token.value), scope=scope)

    def _parse_call(self, scope: str) -> ProcedureCall:
        name = self._eat("IDENT")
        self._eat("LPAREN")
        args: List[Node] = []
        while self.current.type != "RPAREN":
            args.append(self._parse_expression(True, scope))
            if self.current.type != "COMMA":
                break
            self._eat("COMMA")
        self._eat("RPAREN")
        return ProcedureCall(location=self._location_from_token(name), name=str(name.value), args=args)

    def _parse_matrix(self, scope: str) -> SingleValue:
        start = self._eat("LBRACKET")
        rows: List[List[Node]] = []
        while self.current.type != "RBRACKET":
            rows.append(self._parse_row("RBRACKET", scope))
            if self.current.type == "SEMICOLON":
                self._eat("SEMICOLON")
        self._eat("RBRACKET")
        return self._deferred(start, rows)

    def _parse_vector(self, scope: str) -> SingleValue:
        start = self._eat("LT")
        row = self._parse_row("GT", scope)
        self._eat("GT")
        return self._deferred(start, [row])

    def _parse_row(self, closing: str, scope: str) -> List[Node]:
        elements: List[Node] = []
        while True:
            element = self._parse_expression(False, scope, closing)
            if not is_computable_node(element):
                raise MSMatrixError("matrix parsing error: expected a numeric element", location=element.location)
            elements.append(element)
            if self.current.type in ("SEMICOLON", closing):
                return elements
            if self.current.type == "COMMA":
                self._eat("COMMA")

    def _deferred(self, start: Token, rows: List[List[Node]]) -> SingleValue:
        location = self._location_from_token(start)
        if not rows:
            raise MSMatrixError("a matrix needs at least one element", location=location)
        width = len(rows[0])
        if any(len(row) != width for row in rows):
            raise MSMatrixError("row dimensions did not match", location=location)
        return SingleValue(location=location, value=DeferredMatrix(rows))

    # Token helpers

    def _eat(self, token_type: str) -> Token:
        token = self.current
        if token.type != token_type:
            raise MSSyntaxError(
                f"expected {_token_name(token_type)}, but got {_token_name(token.type)}",
                location=self._location_from_token(token),
            )
        self.current = self.lexer.next_token()
        return token

    def _skip_newlines(self) -> None:
        while self.current.type == "NEWLINE":
            self._eat("NEWLINE")

    def _location_from_token(self, token: Token) -> SourceLocation:
        line_index = token.line - 1
        statement = ""
        if 0 <= line_index < len(self.source_lines):
            statement = self.source_lines[line_index].strip()
        return SourceLocation(file=self.filename, line=token.line, column=token.column, statement=statement)


def _token_name(token_type: str) -> str:
    return _TOKEN_NAMES.get(token_type, token_type.lower())


def parse_source(text: str, filename: str = "<string>") -> Compound:
    return Parser(Lexer(text, filename)).parse()
