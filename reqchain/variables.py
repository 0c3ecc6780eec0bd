"""reqchain variables - the variable union and the layered variable store."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

from reqchain.errors import ConfigError, VariableRangeError


@dataclass
class Literal:
    """A plain string value."""

    kind: ClassVar[str] = "literal"
    value: str

    def current(self, name: str = "") -> str:
        return self.value


@dataclass
class MultiValue:
    """A set of options with one active selection.

    ``aliases`` maps a short alias name to an option index, so that
    ``select("prod")`` can address an option by nickname.
    """

    kind: ClassVar[str] = "multi"
    options: list[str]
    active: int = 0
    description: str = ""
    aliases: dict[str, int] = field(default_factory=dict)

    def validate(self, name: str = "") -> None:
        if not self.options:
            raise VariableRangeError(name, "multi-value variable has no options")
        if self.active < 0:
            raise VariableRangeError(name, f"active index {self.active} is negative")
        if self.active >= len(self.options):
            raise VariableRangeError(
                name,
                f"active index {self.active} is out of bounds "
                f"(have {len(self.options)} options)",
            )
        for alias, index in self.aliases.items():
            if not 0 <= index < len(self.options):
                raise VariableRangeError(
                    name,
                    f"alias '{alias}' points at missing option {index}",
                )

    def current(self, name: str = "") -> str:
        self.validate(name)
        return self.options[self.active]

    def index_of(self, choice: str) -> int | None:
        """Find an option by alias, exact option text, or numeric index."""
        if choice in self.aliases:
            return self.aliases[choice]
        if choice in self.options:
            return self.options.index(choice)
        if choice.lstrip("-").isdigit():
            return int(choice)
        return None


@dataclass
class Interactive:
    """Marker for a value that is prompted for at use time.

    ``default`` is offered to the user and used when nobody can be asked.
    """

    kind: ClassVar[str] = "interactive"
    default: Literal | MultiValue | None = None

    def current(self, name: str = "") -> str | None:
        if self.default is None:
            return None
        return self.default.current(name)


Variable = Union[Literal, MultiValue, Interactive]


# ── Config form ─────────────────────────────────────────────────────────


def parse_variable(name: str, raw: Any) -> Variable:
    """Build a Variable from its config form.

    Accepted shapes:
      - scalar                          -> Literal
      - {options: [...], active: N, description, aliases}  -> MultiValue
      - {interactive: true, value: ...} -> Interactive wrapping the value
      - {interactive: true, options: [...], ...} -> Interactive wrapping a MultiValue
    """
    if isinstance(raw, dict):
        if raw.get("interactive"):
            inner = {k: v for k, v in raw.items() if k != "interactive"}
            if "options" in inner:
                return Interactive(_parse_multi(name, inner))
            if inner.get("value") is not None:
                return Interactive(Literal(_scalar(inner["value"])))
            return Interactive()
        if "options" in raw:
            return _parse_multi(name, raw)
        if "value" in raw:
            return Literal(_scalar(raw["value"]))
        raise ConfigError(f"variable '{name}': unrecognised definition {raw!r}")
    if isinstance(raw, list):
        raise ConfigError(f"variable '{name}': a list needs an 'options' key")
    if raw is None:
        return Literal("")
    return Literal(_scalar(raw))


def _parse_multi(name: str, raw: dict) -> MultiValue:
    options = raw.get("options") or []
    if not isinstance(options, list):
        raise ConfigError(f"variable '{name}': options must be a list")
    aliases = raw.get("aliases") or {}
    if not isinstance(aliases, dict):
        raise ConfigError(f"variable '{name}': aliases must be a mapping")
    try:
        active = int(raw.get("active", 0))
        alias_map = {str(k): int(v) for k, v in aliases.items()}
    except (TypeError, ValueError) as e:
        raise ConfigError(f"variable '{name}': {e}") from e
    return MultiValue(
        options=[_scalar(o) for o in options],
        active=active,
        description=str(raw.get("description") or ""),
        aliases=alias_map,
    )


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def dump_variable(var: Variable) -> Any:
    """Inverse of parse_variable, used when profiles are written back."""
    if isinstance(var, Literal):
        return var.value
    if isinstance(var, MultiValue):
        out: dict[str, Any] = {"options": list(var.options), "active": var.active}
        if var.description:
            out["description"] = var.description
        if var.aliases:
            out["aliases"] = dict(var.aliases)
        return out
    out = {"interactive": True}
    if var.default is not None:
        inner = dump_variable(var.default)
        if isinstance(inner, dict):
            out.update(inner)
        else:
            out["value"] = inner
    return out


# ── Store ───────────────────────────────────────────────────────────────


class VariableStore:
    """Layered variable lookup.

    Lookup order for a plain name: overrides, session, profile.
    ``env.NAME`` is looked up in the env layer only.

    The store does no I/O and no locking. Callers that share a store
    between concurrent chain runs must serialize access themselves.
    """

    def __init__(
        self,
        profile: dict[str, Variable] | None = None,
        session: dict[str, str] | None = None,
        overrides: dict[str, str] | None = None,
        env: dict[str, str] | None = None,
    ):
        self.profile: dict[str, Variable] = dict(profile or {})
        self.session: dict[str, str] = dict(session or {})
        self.overrides: dict[str, str] = dict(overrides or {})
        self.env: dict[str, str] = dict(env or {})

    def lookup(self, name: str) -> Variable | None:
        """Return the raw Variable a name resolves to, or None."""
        if name.startswith("env."):
            value = self.env.get(name[4:])
            return Literal(value) if value is not None else None
        if name in self.overrides:
            return Literal(self.overrides[name])
        if name in self.session:
            return Literal(self.session[name])
        return self.profile.get(name)

    def get(self, name: str) -> tuple[str | None, bool]:
        """Return (value, found).

        A multi-value variable yields its active option. An interactive
        variable yields its default, or is not found when it has none.
        """
        var = self.lookup(name)
        if var is None:
            return None, False
        value = var.current(name)
        if value is None:
            return None, False
        return value, True

    def set_session(self, name: str, value: str) -> None:
        self.session[name] = value

    def unset_session(self, name: str) -> bool:
        return self.session.pop(name, None) is not None

    def clear_session(self) -> None:
        self.session.clear()

    def switch_profile(self, variables: dict[str, Variable]) -> None:
        """Install a new profile bag. Session variables never survive a switch."""
        self.profile = dict(variables)
        self.clear_session()

    def validate(self, name: str) -> None:
        var = self.profile.get(name)
        if isinstance(var, Interactive):
            var = var.default
        if isinstance(var, MultiValue):
            var.validate(name)

    def validate_all(self) -> list[VariableRangeError]:
        """Validate every profile variable, returning the failures."""
        errors: list[VariableRangeError] = []
        for name in self.profile:
            try:
                self.validate(name)
            except VariableRangeError as e:
                errors.append(e)
        return errors

    def select(self, name: str, choice: str) -> str:
        """Change a multi-value profile variable's active option.

        ``choice`` may be an alias, the option text, or an index.
        Returns the newly active option.
        """
        var = self.profile.get(name)
        if isinstance(var, Interactive):
            var = var.default
        if not isinstance(var, MultiValue):
            raise ConfigError(f"variable '{name}' is not a multi-value variable")
        index = var.index_of(choice)
        if index is None:
            raise VariableRangeError(name, f"no option or alias '{choice}'")
        previous = var.active
        var.active = index
        try:
            return var.current(name)
        except VariableRangeError:
            var.active = previous
            raise
