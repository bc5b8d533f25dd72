"""Expression language for fieldlogic derivations, conditions and validators.

This module provides:
- ExpressionFunctions: Table of functions callable from expressions
- Lexer: Tokenizes expression strings
- Parser: Produces AST from tokens
- Evaluator: Evaluates AST against an EvaluationContext
- extract_dependencies: Static dependency extraction from an AST
"""

from fieldlogic.expressions.dependencies import (
    EXTERNAL,
    FORM,
    Dependency,
    extract_dependencies,
    parse_dependency,
    referenced_functions,
    referenced_identifiers,
)
from fieldlogic.expressions.evaluator import (
    CONTEXT_VARIABLES,
    EvaluationContext,
    EvaluationError,
    Evaluator,
    evaluate,
    evaluate_bool,
    to_bool,
)
from fieldlogic.expressions.functions import (
    ExpressionFunctions,
    FunctionCategory,
    FunctionDefinition,
    FunctionParameter,
    default_functions,
)
from fieldlogic.expressions.lexer import Lexer, LexerError, Token, TokenType
from fieldlogic.expressions.parser import (
    ASTNode,
    ArrayLiteral,
    BinaryOp,
    Conditional,
    FunctionCall,
    Identifier,
    IndexAccess,
    Literal,
    MemberAccess,
    MethodCall,
    ParseError,
    Parser,
    UnaryOp,
    parse,
)

__all__ = [
    # Dependencies
    "EXTERNAL",
    "FORM",
    "Dependency",
    "extract_dependencies",
    "parse_dependency",
    "referenced_functions",
    "referenced_identifiers",
    # Evaluator
    "CONTEXT_VARIABLES",
    "EvaluationContext",
    "EvaluationError",
    "Evaluator",
    "evaluate",
    "evaluate_bool",
    "to_bool",
    # Functions
    "ExpressionFunctions",
    "FunctionCategory",
    "FunctionDefinition",
    "FunctionParameter",
    "default_functions",
    # Lexer
    "Lexer",
    "LexerError",
    "Token",
    "TokenType",
    # Parser
    "ASTNode",
    "ArrayLiteral",
    "BinaryOp",
    "Conditional",
    "FunctionCall",
    "Identifier",
    "IndexAccess",
    "Literal",
    "MemberAccess",
    "MethodCall",
    "ParseError",
    "Parser",
    "UnaryOp",
    "parse",
]
