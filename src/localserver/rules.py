"""
LocalServer Rules

Predicates deciding whether a request URL is handled by a provider.

Rules always match the whole value: ``https://.*/users`` matches
``https://api.example.com/users`` but not ``https://api.example.com/users/1``.
"""

import re
from typing import Any, Callable, Protocol, Union, runtime_checkable

from .errors import InvalidRuleError, MatchEvaluationError


@runtime_checkable
class Rule(Protocol):
    """Anything that can tell whether a string satisfies it."""

    def is_satisfied(self, value: str) -> bool: ...


class RegexRule:
    """
    Regular expression rule with whole-string semantics.

    Example:
        rule = RegexRule(r'https://.*/persons/\\d+')
        rule.is_satisfied('https://api.example.com/persons/123')  # True
        rule.is_satisfied('https://api.example.com/persons/123/x')  # False
    """

    __slots__ = ('_regex',)

    def __init__(self, pattern: Union[str, re.Pattern], flags: int = 0):
        """
        Compile the rule.

        Args:
            pattern: Regex source or an already compiled pattern
            flags: ``re`` flags, only used when ``pattern`` is a string

        Raises:
            InvalidRuleError: If the pattern does not compile
        """
        if isinstance(pattern, re.Pattern):
            regex = pattern
        else:
            try:
                regex = re.compile(pattern, flags)
            except (re.error, TypeError) as e:
                raise InvalidRuleError(str(pattern), str(e)) from e
        object.__setattr__(self, '_regex', regex)

    def __setattr__(self, name, value):
        raise AttributeError(f"{type(self).__name__} is immutable")

    @property
    def pattern(self) -> str:
        return self._regex.pattern

    def is_satisfied(self, value: str) -> bool:
        return self._regex.fullmatch(value) is not None

    def __repr__(self) -> str:
        return f"RegexRule({self.pattern!r})"


class PredicateRule:
    """Rule backed by an arbitrary callable."""

    __slots__ = ('_predicate',)

    def __init__(self, predicate: Callable[[str], Any]):
        object.__setattr__(self, '_predicate', predicate)

    def __setattr__(self, name, value):
        raise AttributeError(f"{type(self).__name__} is immutable")

    def is_satisfied(self, value: str) -> bool:
        try:
            return bool(self._predicate(value))
        except Exception as e:
            raise MatchEvaluationError(f"Rule {self._predicate!r} failed on {value!r}: {e}") from e

    def __repr__(self) -> str:
        return f"PredicateRule({self._predicate!r})"


def as_rule(rule: Union[str, re.Pattern, Rule, Callable[[str], Any]]) -> Rule:
    """
    Normalize the accepted rule spellings into a Rule.

    Strings and compiled patterns become RegexRule, objects already
    implementing ``is_satisfied`` are kept, other callables become
    PredicateRule.
    """
    if isinstance(rule, (str, re.Pattern)):
        return RegexRule(rule)
    if isinstance(rule, Rule):
        return rule
    if callable(rule):
        return PredicateRule(rule)
    raise InvalidRuleError(repr(rule), "expected a pattern string, a compiled pattern or a callable")
