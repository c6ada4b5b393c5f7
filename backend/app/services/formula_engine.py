"""Evaluador de fórmulas de tarifa.

Las fórmulas son expresiones aritméticas sobre un vocabulario fijo de
variables de viaje (``Valor * Palets + Peaje``). Se tokenizan, se parsean a
un árbol tipado (``Literal``, ``Variable``, ``BinaryOp``) y se evalúan con
aritmética decimal exacta. Nunca se ejecuta código dinámico.
"""

import math
import re
from dataclasses import dataclass, field
from decimal import ROUND_HALF_EVEN, Context, Decimal, DivisionByZero, InvalidOperation, Overflow
from enum import Enum
from functools import lru_cache
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Optional, Union

MAX_FORMULA_LENGTH = 500
MAX_NESTING_DEPTH = 64
# Acota los valores del contexto para que ningún producto desborde el Decimal
MAX_ABS_VALUE = Decimal("1e15")
# Un resultado mayor no se puede guardar ni serializar como float finito
MAX_RESULT = Decimal("1e300")
LONG_FORMULA_WARNING = 400

CANONICAL_VARIABLES = (
    "palets",
    "distancia",
    "peso",
    "volumen",
    "tiempo",
    "combustible",
    "peaje",
    "tarifaBase",
    "multiplicador",
)

# Nombres capitalizados que usan las fórmulas guardadas en los clientes
VARIABLE_ALIASES: Dict[str, str] = {
    "Valor": "tarifaBase",
    "TarifaBase": "tarifaBase",
    "Palets": "palets",
    "Distancia": "distancia",
    "Peso": "peso",
    "Volumen": "volumen",
    "Tiempo": "tiempo",
    "Combustible": "combustible",
    "Peaje": "peaje",
    "Multiplicador": "multiplicador",
}

KNOWN_IDENTIFIERS: Dict[str, str] = {name: name for name in CANONICAL_VARIABLES}
KNOWN_IDENTIFIERS.update(VARIABLE_ALIASES)

ZERO = Decimal(0)

# Contexto privado: no depende del contexto decimal global del hilo
DECIMAL_CONTEXT = Context(
    prec=28,
    rounding=ROUND_HALF_EVEN,
    traps=[DivisionByZero, InvalidOperation, Overflow],
)

_TOKEN_RE = re.compile(
    r"""
    (?P<space>\s+)
    |(?P<number>\d+(?:[.,]\d+)?|[.,]\d+)
    |(?P<identifier>[A-Za-z_][A-Za-z0-9_]*)
    |(?P<operator>[-+*/])
    |(?P<lparen>\()
    |(?P<rparen>\))
    """,
    re.VERBOSE | re.ASCII,
)


class FormulaErrorKind(str, Enum):
    SYNTAX_ERROR = "SyntaxError"
    DIVISION_BY_ZERO = "DivisionByZero"
    OVERFLOW = "Overflow"


class FormulaError(Exception):
    """Error recuperable al compilar o evaluar una fórmula."""

    kind: FormulaErrorKind

    def __init__(self, message: str, position: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.position = position

    def to_dict(self) -> Dict[str, object]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "position": self.position,
        }


class FormulaSyntaxError(FormulaError):
    kind = FormulaErrorKind.SYNTAX_ERROR


class FormulaDivisionByZero(FormulaError):
    kind = FormulaErrorKind.DIVISION_BY_ZERO


class FormulaOverflow(FormulaError):
    kind = FormulaErrorKind.OVERFLOW


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    position: int


@dataclass(frozen=True)
class Literal:
    value: Decimal


@dataclass(frozen=True)
class Variable:
    name: str
    position: int = field(default=0, compare=False)


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: "Expression"
    right: "Expression"
    position: int = field(default=0, compare=False)


Expression = Union[Literal, Variable, BinaryOp]


@dataclass(frozen=True)
class CompiledFormula:
    source: str
    tree: Expression
    variables: FrozenSet[str]

    def evaluate(self, context: Optional[Mapping[str, object]] = None) -> Decimal:
        return evaluate(self, context)


@dataclass(frozen=True)
class EvaluationResult:
    value: Decimal
    formula_used: str


EvaluationContext = Mapping[str, Decimal]


def tokenize(formula: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    while pos < len(formula):
        match = _TOKEN_RE.match(formula, pos)
        if match is None:
            raise FormulaSyntaxError(
                f"Carácter no válido '{formula[pos]}' en la posición {pos}", pos
            )
        kind = match.lastgroup
        if kind != "space":
            tokens.append(Token(kind, match.group(), pos))
        pos = match.end()
    return tokens


class _Parser:
    # expr   := term (('+' | '-') term)*
    # term   := unary (('*' | '/') unary)*
    # unary  := ('+' | '-') unary | primary
    # primary:= number | identifier | '(' expr ')'

    def __init__(self, tokens: List[Token], length: int):
        self.tokens = tokens
        self.length = length
        self.index = 0
        self.depth = 0

    def peek(self) -> Optional[Token]:
        if self.index < len(self.tokens):
            return self.tokens[self.index]
        return None

    def advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def parse(self) -> Expression:
        if not self.tokens:
            raise FormulaSyntaxError("La fórmula está vacía", 0)
        tree = self.expression()
        token = self.peek()
        if token is not None:
            if token.kind == "rparen":
                raise FormulaSyntaxError(
                    f"Paréntesis de cierre sin apertura en la posición {token.position}",
                    token.position,
                )
            raise FormulaSyntaxError(
                f"Se esperaba un operador antes de '{token.text}' en la posición {token.position}",
                token.position,
            )
        return tree

    def expression(self) -> Expression:
        node = self.term()
        while True:
            token = self.peek()
            if token is None or token.kind != "operator" or token.text not in "+-":
                return node
            self.advance()
            node = BinaryOp(token.text, node, self.term(), token.position)

    def term(self) -> Expression:
        node = self.unary()
        while True:
            token = self.peek()
            if token is None or token.kind != "operator" or token.text not in "*/":
                return node
            self.advance()
            node = BinaryOp(token.text, node, self.unary(), token.position)

    def unary(self) -> Expression:
        token = self.peek()
        if token is not None and token.kind == "operator" and token.text in "+-":
            self.advance()
            self.enter(token)
            operand = self.unary()
            self.depth -= 1
            if token.text == "+":
                return operand
            return BinaryOp("-", Literal(ZERO), operand, token.position)
        return self.primary()

    def primary(self) -> Expression:
        token = self.peek()
        if token is None:
            raise FormulaSyntaxError(
                "La fórmula termina de forma inesperada", self.length
            )
        if token.kind == "number":
            self.advance()
            return Literal(Decimal(token.text.replace(",", ".")))
        if token.kind == "identifier":
            self.advance()
            canonical = KNOWN_IDENTIFIERS.get(token.text)
            if canonical is None:
                raise FormulaSyntaxError(
                    f"Variable desconocida '{token.text}' en la posición {token.position}",
                    token.position,
                )
            return Variable(canonical, token.position)
        if token.kind == "lparen":
            self.advance()
            self.enter(token)
            node = self.expression()
            closing = self.peek()
            if closing is None or closing.kind != "rparen":
                raise FormulaSyntaxError(
                    f"Paréntesis sin cerrar abierto en la posición {token.position}",
                    token.position,
                )
            self.advance()
            self.depth -= 1
            return node
        if token.kind == "rparen":
            raise FormulaSyntaxError(
                f"Paréntesis de cierre inesperado en la posición {token.position}",
                token.position,
            )
        raise FormulaSyntaxError(
            f"Se esperaba un valor antes de '{token.text}' en la posición {token.position}",
            token.position,
        )

    def enter(self, token: Token) -> None:
        self.depth += 1
        if self.depth > MAX_NESTING_DEPTH:
            raise FormulaSyntaxError(
                f"La fórmula supera el anidamiento máximo de {MAX_NESTING_DEPTH} niveles",
                token.position,
            )


def parse(tokens: List[Token], length: Optional[int] = None) -> Expression:
    if length is None:
        length = tokens[-1].position + len(tokens[-1].text) if tokens else 0
    return _Parser(tokens, length).parse()


def _collect_variables(node: Expression) -> FrozenSet[str]:
    if isinstance(node, Variable):
        return frozenset((node.name,))
    if isinstance(node, BinaryOp):
        return _collect_variables(node.left) | _collect_variables(node.right)
    return frozenset()


@lru_cache(maxsize=512)
def compile_formula(formula: str) -> CompiledFormula:
    if not isinstance(formula, str):
        raise FormulaSyntaxError("La fórmula debe ser un texto", 0)
    if len(formula) > MAX_FORMULA_LENGTH:
        raise FormulaSyntaxError(
            f"La fórmula supera el largo máximo de {MAX_FORMULA_LENGTH} caracteres",
            MAX_FORMULA_LENGTH,
        )
    tree = parse(tokenize(formula), len(formula))
    return CompiledFormula(source=formula, tree=tree, variables=_collect_variables(tree))


def _to_decimal(name: str, value: object) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, bool):
        raise ValueError(f"Valor no numérico para '{name}': {value!r}")
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, int):
        number = Decimal(value)
    elif isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"Valor no finito para '{name}': {value!r}")
        # repr evita arrastrar la expansión binaria del float
        number = Decimal(repr(value))
    elif isinstance(value, str):
        text = value.strip().replace(",", ".")
        if not text:
            return ZERO
        try:
            number = Decimal(text)
        except InvalidOperation:
            raise ValueError(f"Valor no numérico para '{name}': {value!r}") from None
    else:
        raise ValueError(f"Valor no numérico para '{name}': {value!r}")
    if not number.is_finite():
        raise ValueError(f"Valor no finito para '{name}': {value!r}")
    if abs(number) > MAX_ABS_VALUE:
        raise ValueError(f"Valor fuera de rango para '{name}': {value!r}")
    return number


def build_context(values: Optional[Mapping[str, object]] = None) -> EvaluationContext:
    """Construye un contexto con las nueve variables; las ausentes valen 0.

    Acepta tanto nombres canónicos (``palets``) como alias (``Palets``).
    Claves fuera del vocabulario se ignoran.
    """
    context: Dict[str, Decimal] = {name: ZERO for name in CANONICAL_VARIABLES}
    for key, value in (values or {}).items():
        canonical = KNOWN_IDENTIFIERS.get(key)
        if canonical is None:
            continue
        context[canonical] = _to_decimal(key, value)
    return MappingProxyType(context)


def _evaluate_node(node: Expression, context: Mapping[str, Decimal]) -> Decimal:
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, Variable):
        return context.get(node.name, ZERO)
    left = _evaluate_node(node.left, context)
    right = _evaluate_node(node.right, context)
    if node.op == "+":
        return DECIMAL_CONTEXT.add(left, right)
    if node.op == "-":
        return DECIMAL_CONTEXT.subtract(left, right)
    if node.op == "*":
        return DECIMAL_CONTEXT.multiply(left, right)
    if right.is_zero():
        raise FormulaDivisionByZero(
            f"División por cero en la posición {node.position}", node.position
        )
    return DECIMAL_CONTEXT.divide(left, right)


def evaluate(
    compiled: CompiledFormula, context: Optional[Mapping[str, object]] = None
) -> Decimal:
    if not isinstance(context, MappingProxyType):
        context = build_context(context)
    # -0 y 0 deben dar el mismo resultado
    value = DECIMAL_CONTEXT.plus(_evaluate_node(compiled.tree, context))
    if abs(value) > MAX_RESULT:
        raise FormulaOverflow(
            f"El resultado de la fórmula supera el máximo admitido ({MAX_RESULT:E})"
        )
    return value


def evaluate_formula(
    formula: str, context: Optional[Mapping[str, object]] = None
) -> EvaluationResult:
    compiled = compile_formula(formula)
    return EvaluationResult(value=evaluate(compiled, context), formula_used=compiled.source)


def _advertencias(formula: str, tokens: List[Token]) -> List[str]:
    advertencias = []
    for token, siguiente in zip(tokens, tokens[1:]):
        if (
            token.text == "/"
            and siguiente.kind == "number"
            and Decimal(siguiente.text.replace(",", ".")).is_zero()
        ):
            advertencias.append(
                f"Posible división por cero detectada en la posición {token.position}"
            )
    if len(formula) > LONG_FORMULA_WARNING:
        advertencias.append("Fórmula muy larga, considere simplificarla")
    return advertencias


def _complejidad(
    formula: str, tokens: List[Token], identificadores: FrozenSet[str]
) -> Dict[str, object]:
    puntuacion = 0
    factores = []
    if len(formula) > 100:
        puntuacion += 2
        factores.append("Fórmula larga")
    if sum(1 for t in tokens if t.kind == "lparen") > 3:
        puntuacion += 3
        factores.append("Muchos paréntesis")
    if len(identificadores) > 8:
        puntuacion += 2
        factores.append("Muchas variables")

    if puntuacion <= 2:
        nivel = "Baja"
    elif puntuacion <= 5:
        nivel = "Media"
    elif puntuacion <= 8:
        nivel = "Alta"
    else:
        nivel = "Muy Alta"
    return {"nivel": nivel, "puntuacion": puntuacion, "factores": factores}


def _sugerencias(formula: str, compiled: CompiledFormula, tokens: List[Token]) -> List[str]:
    sugerencias = []
    if len(formula) > 200:
        sugerencias.append("Considere dividir esta fórmula compleja en varias más simples")
    if "tarifaBase" not in compiled.variables:
        sugerencias.append('Considere incluir la variable "Valor" como base del cálculo')
    if len(compiled.variables) > 5:
        sugerencias.append("Con tantas variables, asegúrese de documentar bien la fórmula")
    if any(t.text == "/" for t in tokens):
        sugerencias.append("Para divisiones, considere validar que el divisor no sea cero")
    return sugerencias


def describe_formula(formula: str) -> Dict[str, object]:
    """Análisis de la fórmula para el editor.

    Además de variables y operadores devuelve advertencias, un nivel de
    complejidad y sugerencias de mejora. Lanza ``FormulaSyntaxError`` si la
    fórmula no compila.
    """
    compiled = compile_formula(formula)
    tokens = tokenize(formula)
    identificadores = frozenset(t.text for t in tokens if t.kind == "identifier")
    return {
        "longitud": len(formula),
        "variables": sorted(compiled.variables),
        "identificadores": sorted(identificadores),
        "operadores": sorted({t.text for t in tokens if t.kind == "operator"}),
        "tieneParentesis": any(t.kind == "lparen" for t in tokens),
        "advertencias": _advertencias(formula, tokens),
        "complejidad": _complejidad(formula, tokens, identificadores),
        "sugerencias": _sugerencias(formula, compiled, tokens),
    }
