"""Cypher subset: lexer, parser, condition evaluation and executor.

Supported::

    MATCH (p:PERSON {name: "Ann"})-[:WORKS_AT|KNOWS]->(o), (e:EVENT)
    WHERE p.name CONTAINS "An" AND NOT o.type = "LOCATION"
    RETURN p, o.name AS org
    ORDER BY p.name DESC
    LIMIT 10

Empty text parses to an empty query; anything else that is malformed raises
``CypherParseError`` with the offending position.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from personal_graphrag.exceptions import CypherParseError
from personal_graphrag.graph import Direction, GraphRepository
from personal_graphrag.models import GraphEntity, GraphRelationship

logger = logging.getLogger(__name__)

# Literal property values
Value = Union[str, int, float, bool, None]


class TokenType(str, Enum):
    KEYWORD = "keyword"
    IDENTIFIER = "identifier"
    STRING = "string"
    NUMBER = "number"
    PUNCT = "punct"
    OPERATOR = "operator"
    EOF = "eof"


KEYWORDS = {
    "MATCH", "WHERE", "RETURN", "AND", "OR", "NOT", "LIMIT", "ORDER", "BY",
    "ASC", "DESC", "CONTAINS", "STARTS", "ENDS", "WITH", "IN", "AS", "IS",
    "TRUE", "FALSE", "NULL",
}

_PUNCTUATION = set("()[]{}:,.*|;")
_ESCAPES = {
    "n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f",
    "\\": "\\", "/": "/", '"': '"', "'": "'",
}
_HEX_DIGITS = set("0123456789abcdefABCDEF")


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: str
    position: int


class CypherLexer:
    """Turns query text into tokens; keywords are case-insensitive."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def tokenize(self) -> list[Token]:
        tokens = []
        text = self.text
        while self.pos < len(text):
            char = text[self.pos]
            start = self.pos

            if char.isspace():
                self.pos += 1
            elif char in "\"'":
                tokens.append(Token(TokenType.STRING, self._read_string(char), start))
            elif char.isdigit():
                tokens.append(Token(TokenType.NUMBER, self._read_number(), start))
            elif char.isalpha() or char == "_":
                word = self._read_identifier()
                if word.upper() in KEYWORDS:
                    tokens.append(Token(TokenType.KEYWORD, word.upper(), start))
                else:
                    tokens.append(Token(TokenType.IDENTIFIER, word, start))
            elif char == "`":
                end = text.find("`", start + 1)
                if end < 0:
                    raise CypherParseError("Unterminated quoted identifier", start)
                tokens.append(Token(TokenType.IDENTIFIER, text[start + 1 : end], start))
                self.pos = end + 1
            elif text.startswith("->", start):
                tokens.append(Token(TokenType.PUNCT, "->", start))
                self.pos += 2
            elif text.startswith(("<>", "!=", "<=", ">="), start):
                tokens.append(Token(TokenType.OPERATOR, text[start : start + 2], start))
                self.pos += 2
            elif char in "=<>":
                tokens.append(Token(TokenType.OPERATOR, char, start))
                self.pos += 1
            elif char == "-":
                tokens.append(Token(TokenType.PUNCT, "-", start))
                self.pos += 1
            elif char in _PUNCTUATION:
                tokens.append(Token(TokenType.PUNCT, char, start))
                self.pos += 1
            else:
                raise CypherParseError(f"Unexpected character {char!r}", start)

        tokens.append(Token(TokenType.EOF, "", len(text)))
        return tokens

    def _read_string(self, quote: str) -> str:
        start = self.pos
        self.pos += 1
        chars = []
        while self.pos < len(self.text):
            char = self.text[self.pos]
            if char == "\\" and self.pos + 1 < len(self.text):
                nxt = self.text[self.pos + 1]
                if nxt == "u":
                    chars.append(self._read_unicode_escape())
                    continue
                chars.append(_ESCAPES.get(nxt, nxt))
                self.pos += 2
                continue
            if char == quote:
                self.pos += 1
                return "".join(chars)
            chars.append(char)
            self.pos += 1
        raise CypherParseError("Unterminated string literal", start)

    def _read_unicode_escape(self) -> str:
        """Decode ``\\uXXXX`` at the current position."""
        digits = self.text[self.pos + 2 : self.pos + 6]
        if len(digits) != 4 or any(c not in _HEX_DIGITS for c in digits):
            raise CypherParseError("Invalid unicode escape", self.pos)
        self.pos += 6
        return chr(int(digits, 16))

    def _read_number(self) -> str:
        start = self.pos
        while self.pos < len(self.text) and self.text[self.pos].isdigit():
            self.pos += 1
        if (
            self.pos + 1 < len(self.text)
            and self.text[self.pos] == "."
            and self.text[self.pos + 1].isdigit()
        ):
            self.pos += 1
            while self.pos < len(self.text) and self.text[self.pos].isdigit():
                self.pos += 1
        return self.text[start : self.pos]

    def _read_identifier(self) -> str:
        start = self.pos
        while self.pos < len(self.text) and (
            self.text[self.pos].isalnum() or self.text[self.pos] == "_"
        ):
            self.pos += 1
        return self.text[start : self.pos]


# AST


@dataclass
class NodePattern:
    variable: str | None = None
    labels: list[str] = field(default_factory=list)
    properties: dict[str, Value] = field(default_factory=dict)


@dataclass
class RelationshipPattern:
    variable: str | None = None
    types: list[str] = field(default_factory=list)
    direction: Direction = Direction.BOTH
    properties: dict[str, Value] = field(default_factory=dict)


@dataclass
class PathPattern:
    nodes: list[NodePattern] = field(default_factory=list)
    relationships: list[RelationshipPattern] = field(default_factory=list)


@dataclass(frozen=True)
class PropertyRef:
    """``variable`` alone, or ``variable.key[.key...]``."""

    variable: str
    path: tuple[str, ...] = ()

    def __str__(self) -> str:
        return ".".join((self.variable, *self.path))


@dataclass(frozen=True)
class Literal:
    value: Value


@dataclass(frozen=True)
class ListLiteral:
    values: tuple[Value, ...]


Expression = Union[PropertyRef, Literal, ListLiteral]


@dataclass
class Comparison:
    left: Expression
    operator: str  # =, <>, <, >, <=, >=, CONTAINS, STARTS WITH, ENDS WITH, IN, IS NULL, IS NOT NULL
    right: Expression | None = None


@dataclass
class And:
    children: list["Condition"]


@dataclass
class Or:
    children: list["Condition"]


@dataclass
class Not:
    child: "Condition"


Condition = Union[Comparison, And, Or, Not]


@dataclass
class ReturnItem:
    expression: Expression
    alias: str | None = None

    @property
    def key(self) -> str:
        if self.alias:
            return self.alias
        if isinstance(self.expression, PropertyRef):
            return self.expression.path[-1] if self.expression.path else self.expression.variable
        if isinstance(self.expression, Literal):
            return str(self.expression.value)
        return "list"


@dataclass
class OrderItem:
    expression: Expression
    descending: bool = False


@dataclass
class CypherQuery:
    match_patterns: list[PathPattern] = field(default_factory=list)
    where: Condition | None = None
    return_items: list[ReturnItem] = field(default_factory=list)
    return_all: bool = False
    order_by: list[OrderItem] = field(default_factory=list)
    limit: int | None = None

    @property
    def is_empty(self) -> bool:
        return not self.match_patterns

    @property
    def variables(self) -> list[str]:
        """Named variables in pattern order."""
        names = []
        for pattern in self.match_patterns:
            for node in pattern.nodes:
                if node.variable and node.variable not in names:
                    names.append(node.variable)
            for rel in pattern.relationships:
                if rel.variable and rel.variable not in names:
                    names.append(rel.variable)
        return names


_COMPARISON_OPERATORS = {"=", "<>", "!=", "<", ">", "<=", ">="}


class CypherParser:
    """Recursive-descent parser for the supported subset."""

    def parse(self, text: str) -> CypherQuery:
        if not text or not text.strip():
            return CypherQuery()

        self.tokens = CypherLexer(text).tokenize()
        self.index = 0
        self._anonymous = 0

        query = CypherQuery()
        self._expect_keyword("MATCH")
        query.match_patterns.append(self._parse_path())
        while self._accept_punct(","):
            query.match_patterns.append(self._parse_path())

        if self._accept_keyword("WHERE"):
            query.where = self._parse_or()

        self._expect_keyword("RETURN")
        if self._accept_punct("*"):
            query.return_all = True
        else:
            query.return_items.append(self._parse_return_item())
            while self._accept_punct(","):
                query.return_items.append(self._parse_return_item())

        if self._accept_keyword("ORDER"):
            self._expect_keyword("BY")
            query.order_by.append(self._parse_order_item())
            while self._accept_punct(","):
                query.order_by.append(self._parse_order_item())

        if self._accept_keyword("LIMIT"):
            token = self._advance()
            if token.type != TokenType.NUMBER or "." in token.value:
                raise CypherParseError("LIMIT expects a non-negative integer", token.position)
            query.limit = int(token.value)

        self._accept_punct(";")
        if self._peek().type != TokenType.EOF:
            token = self._peek()
            raise CypherParseError(f"Unexpected token {token.value!r}", token.position)

        return query

    # Token helpers

    def _peek(self, offset: int = 0) -> Token:
        return self.tokens[min(self.index + offset, len(self.tokens) - 1)]

    def _advance(self) -> Token:
        token = self._peek()
        if token.type != TokenType.EOF:
            self.index += 1
        return token

    def _accept_keyword(self, keyword: str) -> bool:
        token = self._peek()
        if token.type == TokenType.KEYWORD and token.value == keyword:
            self.index += 1
            return True
        return False

    def _expect_keyword(self, keyword: str) -> None:
        if not self._accept_keyword(keyword):
            token = self._peek()
            found = token.value or "end of input"
            raise CypherParseError(f"Expected {keyword}, found {found!r}", token.position)

    def _accept_punct(self, value: str) -> bool:
        token = self._peek()
        if token.type == TokenType.PUNCT and token.value == value:
            self.index += 1
            return True
        return False

    def _expect_punct(self, value: str) -> None:
        if not self._accept_punct(value):
            token = self._peek()
            found = token.value or "end of input"
            raise CypherParseError(f"Expected {value!r}, found {found!r}", token.position)

    def _expect_identifier(self) -> str:
        token = self._advance()
        if token.type != TokenType.IDENTIFIER:
            found = token.value or "end of input"
            raise CypherParseError(f"Expected identifier, found {found!r}", token.position)
        return token.value

    # Patterns

    def _parse_path(self) -> PathPattern:
        path = PathPattern(nodes=[self._parse_node()])
        while True:
            relationship = self._parse_relationship()
            if relationship is None:
                return path
            path.relationships.append(relationship)
            path.nodes.append(self._parse_node())

    def _parse_node(self) -> NodePattern:
        self._expect_punct("(")
        node = NodePattern()
        if self._peek().type == TokenType.IDENTIFIER:
            node.variable = self._advance().value
        while self._accept_punct(":"):
            node.labels.append(self._expect_identifier())
        if self._peek().value == "{" and self._peek().type == TokenType.PUNCT:
            node.properties = self._parse_properties()
        self._expect_punct(")")
        return node

    def _parse_relationship(self) -> RelationshipPattern | None:
        token = self._peek()
        incoming = False
        if token.type == TokenType.OPERATOR and token.value == "<" and self._peek(1).value == "-":
            incoming = True
            self.index += 2
        elif token.type == TokenType.PUNCT and token.value == "-":
            self.index += 1
        elif token.type == TokenType.PUNCT and token.value == "->":
            raise CypherParseError("Relationship is missing its leading '-'", token.position)
        else:
            return None

        relationship = RelationshipPattern()
        if self._accept_punct("["):
            if self._peek().type == TokenType.IDENTIFIER:
                relationship.variable = self._advance().value
            if self._accept_punct(":"):
                relationship.types.append(self._expect_identifier())
                while self._accept_punct("|"):
                    self._accept_punct(":")
                    relationship.types.append(self._expect_identifier())
            if self._peek().value == "{" and self._peek().type == TokenType.PUNCT:
                relationship.properties = self._parse_properties()
            self._expect_punct("]")

        if self._accept_punct("->"):
            if incoming:
                raise CypherParseError("Relationship cannot point both ways", self._peek(-1).position)
            relationship.direction = Direction.OUTGOING
        elif self._accept_punct("-"):
            relationship.direction = Direction.INCOMING if incoming else Direction.BOTH
        else:
            token = self._peek()
            raise CypherParseError("Unterminated relationship pattern", token.position)
        return relationship

    def _parse_properties(self) -> dict[str, Value]:
        self._expect_punct("{")
        properties: dict[str, Value] = {}
        if self._accept_punct("}"):
            return properties
        while True:
            key = self._expect_identifier()
            self._expect_punct(":")
            properties[key] = self._parse_literal_value()
            if self._accept_punct("}"):
                return properties
            self._expect_punct(",")

    # Conditions

    def _parse_or(self) -> Condition:
        children = [self._parse_and()]
        while self._accept_keyword("OR"):
            children.append(self._parse_and())
        return children[0] if len(children) == 1 else Or(children)

    def _parse_and(self) -> Condition:
        children = [self._parse_not()]
        while self._accept_keyword("AND"):
            children.append(self._parse_not())
        return children[0] if len(children) == 1 else And(children)

    def _parse_not(self) -> Condition:
        if self._accept_keyword("NOT"):
            return Not(self._parse_not())
        if self._accept_punct("("):
            condition = self._parse_or()
            self._expect_punct(")")
            return condition
        return self._parse_comparison()

    def _parse_comparison(self) -> Comparison:
        left = self._parse_expression()
        token = self._advance()

        if token.type == TokenType.OPERATOR and token.value in _COMPARISON_OPERATORS:
            operator = "<>" if token.value == "!=" else token.value
            return Comparison(left, operator, self._parse_expression())
        if token.type == TokenType.KEYWORD:
            if token.value == "CONTAINS":
                return Comparison(left, "CONTAINS", self._parse_expression())
            if token.value in ("STARTS", "ENDS"):
                self._expect_keyword("WITH")
                return Comparison(left, f"{token.value} WITH", self._parse_expression())
            if token.value == "IN":
                return Comparison(left, "IN", self._parse_expression())
            if token.value == "IS":
                negated = self._accept_keyword("NOT")
                self._expect_keyword("NULL")
                return Comparison(left, "IS NOT NULL" if negated else "IS NULL")

        found = token.value or "end of input"
        raise CypherParseError(f"Expected comparison operator, found {found!r}", token.position)

    def _parse_expression(self) -> Expression:
        token = self._peek()
        if token.type == TokenType.IDENTIFIER:
            self.index += 1
            path = []
            while self._accept_punct("."):
                path.append(self._expect_identifier())
            return PropertyRef(token.value, tuple(path))
        if token.type == TokenType.PUNCT and token.value == "[":
            self.index += 1
            values = []
            if not self._accept_punct("]"):
                values.append(self._parse_literal_value())
                while self._accept_punct(","):
                    values.append(self._parse_literal_value())
                self._expect_punct("]")
            return ListLiteral(tuple(values))
        return Literal(self._parse_literal_value())

    def _parse_literal_value(self) -> Value:
        token = self._advance()
        if token.type == TokenType.STRING:
            return token.value
        if token.type == TokenType.NUMBER:
            return _to_number(token.value)
        if token.type == TokenType.PUNCT and token.value == "-":
            number = self._advance()
            if number.type != TokenType.NUMBER:
                raise CypherParseError("Expected number after '-'", number.position)
            return -_to_number(number.value)
        if token.type == TokenType.KEYWORD and token.value in ("TRUE", "FALSE"):
            return token.value == "TRUE"
        if token.type == TokenType.KEYWORD and token.value == "NULL":
            return None
        found = token.value or "end of input"
        raise CypherParseError(f"Expected literal value, found {found!r}", token.position)

    # RETURN / ORDER BY

    def _parse_return_item(self) -> ReturnItem:
        item = ReturnItem(self._parse_expression())
        if self._accept_keyword("AS"):
            item.alias = self._expect_identifier()
        return item

    def _parse_order_item(self) -> OrderItem:
        item = OrderItem(self._parse_expression())
        if self._accept_keyword("DESC"):
            item.descending = True
        else:
            self._accept_keyword("ASC")
        return item


def _to_number(text: str) -> int | float:
    return float(text) if "." in text else int(text)


# Evaluation

_MISSING = object()

Binding = Union[GraphEntity, GraphRelationship]


def entity_properties(entity: GraphEntity) -> dict[str, Any]:
    """Property map of an entity as seen by queries."""
    properties: dict[str, Any] = {}
    for key, value in (entity.metadata or {}).items():
        properties[key] = value
    properties.update(
        id=entity.id,
        name=entity.name,
        type=entity.type,
        description=entity.description,
        lastModified=entity.last_modified.isoformat(),
    )
    return properties


def relationship_properties(relationship: GraphRelationship) -> dict[str, Any]:
    properties: dict[str, Any] = dict(relationship.metadata or {})
    properties.update(
        id=relationship.id,
        type=relationship.type,
        weight=relationship.weight,
        sourceId=relationship.source_id,
        targetId=relationship.target_id,
    )
    return properties


def properties_of(binding: Binding) -> dict[str, Any]:
    if isinstance(binding, GraphEntity):
        return entity_properties(binding)
    return relationship_properties(binding)


def resolve(expression: Expression, bindings: dict[str, Binding]) -> Any:
    """Value of an expression, or ``_MISSING`` for unbound names and absent keys."""
    if isinstance(expression, Literal):
        return expression.value
    if isinstance(expression, ListLiteral):
        return list(expression.values)

    bound = bindings.get(expression.variable)
    if bound is None:
        return _MISSING
    value: Any = properties_of(bound)
    for key in expression.path:
        if not isinstance(value, dict) or key not in value:
            return _MISSING
        value = value[key]
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _compare(left: Any, right: Any) -> int:
    if _is_number(left) and _is_number(right):
        return (left > right) - (left < right)
    a, b = str(left), str(right)
    return (a > b) - (a < b)


def _evaluate_comparison(condition: Comparison, bindings: dict[str, Binding]) -> bool:
    left = resolve(condition.left, bindings)
    operator = condition.operator

    if operator == "IS NULL":
        return left is _MISSING or left is None
    if operator == "IS NOT NULL":
        return left is not _MISSING and left is not None

    right = resolve(condition.right, bindings) if condition.right is not None else _MISSING
    if left is _MISSING or right is _MISSING:
        return False

    if operator == "=":
        if isinstance(left, bool) != isinstance(right, bool):
            return False
        return left == right
    if operator == "<>":
        if isinstance(left, bool) != isinstance(right, bool):
            return True
        return left != right
    if operator == "IN":
        return isinstance(right, list) and left in right

    if left is None or right is None:
        return False
    if operator == "CONTAINS":
        return str(right) in str(left)
    if operator == "STARTS WITH":
        return str(left).startswith(str(right))
    if operator == "ENDS WITH":
        return str(left).endswith(str(right))

    order = _compare(left, right)
    if operator == "<":
        return order < 0
    if operator == ">":
        return order > 0
    if operator == "<=":
        return order <= 0
    if operator == ">=":
        return order >= 0
    raise ValueError(f"Unknown operator: {operator}")


def evaluate_condition(condition: Condition, bindings: dict[str, Binding]) -> bool:
    """Evaluate a WHERE condition against bound entities/relationships.

    Total: a comparison touching a missing property is False.
    """
    if isinstance(condition, Comparison):
        return _evaluate_comparison(condition, bindings)
    if isinstance(condition, And):
        return all(evaluate_condition(c, bindings) for c in condition.children)
    if isinstance(condition, Or):
        return any(evaluate_condition(c, bindings) for c in condition.children)
    if isinstance(condition, Not):
        return not evaluate_condition(condition.child, bindings)
    raise TypeError(f"Unknown condition: {condition!r}")


def _sort_key(value: Any) -> tuple:
    if value is _MISSING or value is None:
        return (2, "")
    if _is_number(value):
        return (0, value)
    return (1, str(value))


# Execution


@dataclass
class CypherResult:
    rows: list[dict[str, Any]] = field(default_factory=list)
    entities: list[GraphEntity] = field(default_factory=list)


class CypherQueryExecutor:
    """Run parsed queries against a graph repository."""

    def __init__(self, repository: GraphRepository):
        self.repository = repository
        self.parser = CypherParser()

    async def execute(self, text: str) -> list[dict[str, Any]]:
        """Parse and run a query, returning projected rows.

        ``RETURN var`` rows map the variable (or alias) to its property map;
        ``RETURN *`` rows map every named variable to its property map.
        """
        return (await self.run(text)).rows

    async def execute_entities(self, text: str) -> list[GraphEntity]:
        """Run a query and return the distinct entities it returns, in row order."""
        return (await self.run(text)).entities

    async def run(self, text: str) -> "CypherResult":
        """Parse and run a query once, keeping both projections."""
        query = self.parser.parse(text)
        bindings = await self.match(query)

        if query.return_all:
            variables = [v for v in query.variables if not v.startswith("_")]
        else:
            variables = [
                item.expression.variable
                for item in query.return_items
                if isinstance(item.expression, PropertyRef) and not item.expression.path
            ]

        entities: list[GraphEntity] = []
        seen: set[str] = set()
        for row in bindings:
            for variable in variables:
                bound = row.get(variable)
                if isinstance(bound, GraphEntity) and bound.id not in seen:
                    seen.add(bound.id)
                    entities.append(bound)

        return CypherResult(
            rows=[self._project(query, row) for row in bindings],
            entities=entities,
        )

    async def match(self, query: CypherQuery) -> list[dict[str, Binding]]:
        """Bindings after MATCH, WHERE, ORDER BY and LIMIT."""
        if query.is_empty:
            return []

        self._entity_cache: dict[str, GraphEntity | None] = {}
        rows: list[dict[str, Binding]] = [{}]
        for index, pattern in enumerate(query.match_patterns):
            rows = await self._match_path(pattern, rows, index)

        if query.where is not None:
            rows = [row for row in rows if evaluate_condition(query.where, row)]

        for item in reversed(query.order_by):
            rows.sort(key=lambda row: _sort_key(resolve(item.expression, row)), reverse=item.descending)

        if query.limit is not None:
            rows = rows[: query.limit]

        logger.debug(f"Cypher matched {len(rows)} rows")
        return rows

    async def _match_path(
        self,
        pattern: PathPattern,
        rows: list[dict[str, Binding]],
        pattern_index: int,
    ) -> list[dict[str, Binding]]:
        names = [
            node.variable or f"_n{pattern_index}_{i}" for i, node in enumerate(pattern.nodes)
        ]

        first = pattern.nodes[0]
        candidates = await self._candidates(first)
        extended = []
        for row in rows:
            for entity in candidates:
                bound = row.get(names[0])
                if bound is not None and bound.id != entity.id:
                    continue
                extended.append({**row, names[0]: entity})
        rows = extended

        for hop, relationship in enumerate(pattern.relationships):
            node = pattern.nodes[hop + 1]
            rows = await self._extend(rows, names[hop], relationship, node, names[hop + 1])
        return rows

    async def _candidates(self, node: NodePattern) -> list[GraphEntity]:
        if node.labels:
            entities = []
            for label in dict.fromkeys(node.labels):
                entities.extend(await self.repository.get_entities_by_type(label))
        else:
            entities = await self.repository.get_all_entities()
        for entity in entities:
            self._entity_cache[entity.id] = entity
        return [e for e in entities if _matches_properties(entity_properties(e), node.properties)]

    async def _entity(self, entity_id: str) -> GraphEntity | None:
        if entity_id not in self._entity_cache:
            self._entity_cache[entity_id] = await self.repository.get_entity(entity_id)
        return self._entity_cache[entity_id]

    async def _extend(
        self,
        rows: list[dict[str, Binding]],
        from_name: str,
        pattern: RelationshipPattern,
        node: NodePattern,
        to_name: str,
    ) -> list[dict[str, Binding]]:
        extended = []
        relationships_by_entity: dict[str, list[GraphRelationship]] = {}

        for row in rows:
            current = row[from_name]
            if current.id not in relationships_by_entity:
                relationships_by_entity[current.id] = await self.repository.get_relationships(
                    current.id
                )

            for relationship in relationships_by_entity[current.id]:
                if pattern.types and relationship.type not in pattern.types:
                    continue
                if not _matches_properties(relationship_properties(relationship), pattern.properties):
                    continue

                other_ids = []
                if pattern.direction in (Direction.OUTGOING, Direction.BOTH) and relationship.source_id == current.id:
                    other_ids.append(relationship.target_id)
                if pattern.direction in (Direction.INCOMING, Direction.BOTH) and relationship.target_id == current.id:
                    other_ids.append(relationship.source_id)

                for other_id in dict.fromkeys(other_ids):
                    other = await self._entity(other_id)
                    if other is None or not _matches_node(other, node):
                        continue
                    bound = row.get(to_name)
                    if bound is not None and bound.id != other.id:
                        continue
                    new_row = {**row, to_name: other}
                    if pattern.variable:
                        new_row[pattern.variable] = relationship
                    extended.append(new_row)
        return extended

    def _project(self, query: CypherQuery, row: dict[str, Binding]) -> dict[str, Any]:
        if query.return_all:
            return {
                name: properties_of(bound)
                for name, bound in row.items()
                if not name.startswith("_")
            }
        projected = {}
        for item in query.return_items:
            value = resolve(item.expression, row)
            projected[item.key] = None if value is _MISSING else value
        return projected


def _matches_properties(properties: dict[str, Any], required: dict[str, Value]) -> bool:
    for key, expected in required.items():
        if key not in properties:
            return False
        actual = properties[key]
        if isinstance(actual, bool) != isinstance(expected, bool) or actual != expected:
            return False
    return True


def _matches_node(entity: GraphEntity, node: NodePattern) -> bool:
    if node.labels and entity.type not in node.labels:
        return False
    return _matches_properties(entity_properties(entity), node.properties)
