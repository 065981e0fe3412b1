"""Host match expressions.

A match expression is a small boolean tree evaluated against `HostFacts`.
Evaluation is pure and total: invalid regular expressions and unknown keys
evaluate to False instead of raising.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple, Union

from .errors import ConfigError
from .host import ARCH_VALUES, OS_VALUES, HostFacts

EQ_KEYS = (
    "env.ci",
    "env.devcontainer",
    "user.name",
    "user.uid",
    "user.gid",
    "user.home",
    "user.can_sudo",
    "user.is_root",
)
_BOOL_KEYS = {"env.ci", "env.devcontainer", "user.can_sudo", "user.is_root"}

_FLAG_BITS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}


@dataclass(frozen=True)
class Pattern:
    matches: str
    flags: str = ""


StringCond = Union[str, Pattern]


class MatchExpr:
    """Base class of all match expression nodes."""

    __slots__ = ()


@dataclass(frozen=True)
class AllOf(MatchExpr):
    children: Tuple[MatchExpr, ...]

    def __post_init__(self) -> None:
        if not self.children:
            raise ValueError("all_of() requires at least one expression")


@dataclass(frozen=True)
class AnyOf(MatchExpr):
    children: Tuple[MatchExpr, ...]

    def __post_init__(self) -> None:
        if not self.children:
            raise ValueError("any_of() requires at least one expression")


@dataclass(frozen=True)
class Os(MatchExpr):
    values: Tuple[str, ...]


@dataclass(frozen=True)
class Arch(MatchExpr):
    values: Tuple[str, ...]


@dataclass(frozen=True)
class Hostname(MatchExpr):
    value: StringCond


@dataclass(frozen=True)
class Eq(MatchExpr):
    key: str
    value: Union[str, bool, Pattern]


@dataclass(frozen=True)
class EnvVar(MatchExpr):
    name: str
    value: Optional[StringCond] = None


def compile_pattern(p: Pattern) -> Optional["re.Pattern[str]"]:
    bits = 0
    for letter in p.flags or "":
        if letter not in _FLAG_BITS:
            return None
        bits |= _FLAG_BITS[letter]
    try:
        return re.compile(p.matches, bits)
    except re.error:
        return None


def _match_string(actual: Optional[str], cond: Any) -> bool:
    if actual is None:
        return False
    if isinstance(cond, Pattern):
        rx = compile_pattern(cond)
        return rx is not None and rx.search(actual) is not None
    if isinstance(cond, str):
        return actual == cond
    return False


def _eq(facts: HostFacts, key: str, value: Any) -> bool:
    if key in _BOOL_KEYS:
        if not isinstance(value, bool):
            return False
        actual = {
            "env.ci": facts.env.ci,
            "env.devcontainer": facts.env.devcontainer,
            "user.can_sudo": facts.user.can_sudo,
            "user.is_root": facts.user.is_root,
        }[key]
        return actual == value
    if key == "user.name":
        return _match_string(facts.user.name, value)
    if key == "user.uid":
        return _match_string(facts.user.uid, value)
    if key == "user.gid":
        return _match_string(facts.user.gid, value)
    if key == "user.home":
        return _match_string(facts.user.home, value)
    return False


def evaluate(facts: HostFacts, expr: MatchExpr) -> bool:
    """Evaluate `expr` against `facts`."""

    if isinstance(expr, AllOf):
        return all(evaluate(facts, e) for e in expr.children)
    if isinstance(expr, AnyOf):
        return any(evaluate(facts, e) for e in expr.children)
    if isinstance(expr, Os):
        return facts.os is not None and facts.os in expr.values
    if isinstance(expr, Arch):
        return facts.arch is not None and facts.arch in expr.values
    if isinstance(expr, Hostname):
        return _match_string(facts.hostname, expr.value)
    if isinstance(expr, Eq):
        return _eq(facts, expr.key, expr.value)
    if isinstance(expr, EnvVar):
        val = facts.env.variables.get(expr.name)
        if expr.value is None:
            return val is not None
        return _match_string(val, expr.value)
    return False


# Builders used by Python-authored profiles and tests.


def all_of(*exprs: MatchExpr) -> MatchExpr:
    return AllOf(tuple(exprs))


def any_of(*exprs: MatchExpr) -> MatchExpr:
    return AnyOf(tuple(exprs))


def os_is(*values: str) -> MatchExpr:
    return Os(tuple(values))


def arch_is(*values: str) -> MatchExpr:
    return Arch(tuple(values))


def hostname(value: StringCond) -> MatchExpr:
    return Hostname(value)


def regex(pattern: str, flags: str = "") -> Pattern:
    return Pattern(matches=pattern, flags=flags)


def ci(value: bool = True) -> MatchExpr:
    return Eq("env.ci", value)


def devcontainer(value: bool = True) -> MatchExpr:
    return Eq("env.devcontainer", value)


def user(value: StringCond) -> MatchExpr:
    return Eq("user.name", value)


def uid(value: StringCond) -> MatchExpr:
    return Eq("user.uid", value)


def gid(value: StringCond) -> MatchExpr:
    return Eq("user.gid", value)


def home(value: StringCond) -> MatchExpr:
    return Eq("user.home", value)


def can_sudo(value: bool = True) -> MatchExpr:
    return Eq("user.can_sudo", value)


def is_root(value: bool = True) -> MatchExpr:
    return Eq("user.is_root", value)


def env_var(name: str, value: Optional[StringCond] = None) -> MatchExpr:
    return EnvVar(name, value)


ANY_OS = os_is("linux", "darwin", "win32")


# YAML form


def _as_list(raw: Any, what: str) -> Sequence[Any]:
    if isinstance(raw, str):
        return [raw]
    if isinstance(raw, list) and raw:
        return raw
    raise ConfigError(f"{what} must be a string or a non-empty list")


def _parse_string_cond(raw: Any, what: str) -> StringCond:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, dict) and isinstance(raw.get("matches"), str) and raw["matches"]:
        extra = set(raw) - {"matches", "flags"}
        if extra:
            raise ConfigError(f"{what}: unexpected keys {sorted(extra)}")
        return Pattern(matches=raw["matches"], flags=str(raw.get("flags") or ""))
    raise ConfigError(f"{what} must be a string or a mapping with 'matches'")


def _parse_one(key: str, raw: Any) -> MatchExpr:
    if key in {"all", "any"}:
        if not isinstance(raw, list) or not raw:
            raise ConfigError(f"'{key}' requires a non-empty list of expressions")
        children = tuple(parse_match(x) for x in raw)
        return AllOf(children) if key == "all" else AnyOf(children)
    if key == "os":
        values = tuple(str(v) for v in _as_list(raw, "os"))
        unknown = [v for v in values if v not in OS_VALUES]
        if unknown:
            raise ConfigError(f"Unknown os value(s): {unknown}")
        return Os(values)
    if key == "arch":
        values = tuple(str(v) for v in _as_list(raw, "arch"))
        unknown = [v for v in values if v not in ARCH_VALUES]
        if unknown:
            raise ConfigError(f"Unknown arch value(s): {unknown}")
        return Arch(values)
    if key == "hostname":
        return Hostname(_parse_string_cond(raw, "hostname"))
    if key == "eq":
        if not isinstance(raw, dict) or "key" not in raw or "value" not in raw:
            raise ConfigError("'eq' requires a mapping with 'key' and 'value'")
        eq_key = str(raw["key"])
        if eq_key not in EQ_KEYS:
            raise ConfigError(f"Unknown eq key: {eq_key}")
        value = raw["value"]
        if not isinstance(value, bool):
            value = _parse_string_cond(value, f"eq {eq_key}")
        return Eq(eq_key, value)
    if key == "env":
        if not isinstance(raw, dict) or not isinstance(raw.get("name"), str):
            raise ConfigError("'env' requires a mapping with 'name'")
        value = raw.get("value")
        return EnvVar(raw["name"], None if value is None else _parse_string_cond(value, f"env {raw['name']}"))
    raise ConfigError(f"Unknown match key: {key}")


def parse_match(raw: Any) -> MatchExpr:
    """Build a match expression from its YAML mapping form.

    A mapping with several keys is an implicit `all`.
    """

    if not isinstance(raw, dict) or not raw:
        raise ConfigError(f"Match expression must be a non-empty mapping, got {raw!r}")
    exprs = [_parse_one(str(k), v) for k, v in raw.items()]
    if len(exprs) == 1:
        return exprs[0]
    return AllOf(tuple(exprs))
