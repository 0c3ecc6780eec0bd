"""reqchain core - config loading, profiles, session file, working directory."""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import dotenv_values

from reqchain.errors import ConfigError
from reqchain.variables import Variable, VariableStore, dump_variable, parse_variable

GLOBAL_DIR = Path.home() / ".reqchain"
GLOBAL_CONFIG = GLOBAL_DIR / "config.yaml"
GLOBAL_SESSION = GLOBAL_DIR / "session.json"

CWD_CONFIG_CANDIDATES = [
    ".reqchain.yaml",
    ".reqchain.yml",
    "reqchain.yaml",
    "reqchain.yml",
]

DEFAULT_PROFILE = "Default"


def resolve_path(
    candidates: list[Path],
    default: Path | None = None,
) -> Path | None:
    """Return the first existing path from candidates.

    If none exist, returns default (which the caller can create).
    """
    for p in candidates:
        if p.exists():
            return p.resolve()
    return default


def resolve_config_path(config_file: str | None) -> Path | None:
    """Find the config file to use.

    Resolution order:
      1. Explicit -c flag (no fallthrough if missing)
      2. .reqchain.yaml (variants) in CWD
      3. ~/.reqchain/config.yaml
    """
    if config_file:
        return resolve_path([Path(config_file)])
    return resolve_path([Path(c) for c in CWD_CONFIG_CANDIDATES] + [GLOBAL_CONFIG])


def load_config(config_path: str | Path | None) -> dict:
    """Load YAML config file. Returns empty sections if not found.

    Stores '_config_dir' and '_config_path' in the returned dict so that
    relative paths (env_file, profile workdirs) resolve against the config
    file, and profile edits can be written back.
    """
    empty = {"defaults": {}, "profiles": [], "_config_dir": None, "_config_path": None}
    if config_path is None:
        return empty
    path = Path(config_path)
    if not path.exists():
        return empty
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid config {path}: {e}", str(path)) from e
    if not isinstance(data, dict):
        raise ConfigError(f"invalid config {path}: expected a mapping", str(path))
    profiles = data.get("profiles") or []
    if not isinstance(profiles, list):
        raise ConfigError(f"invalid config {path}: 'profiles' must be a list", str(path))
    return {
        "defaults": data.get("defaults") or {},
        "profiles": profiles,
        "_config_dir": path.resolve().parent,
        "_config_path": path.resolve(),
    }


def load_env(env_file: str | None, base_dir: str | Path = ".") -> dict[str, str]:
    """Load .env file and merge with os.environ.

    .env values take precedence over os.environ.
    """
    env = dict(os.environ)
    if env_file:
        dotenv_path = Path(base_dir) / env_file
        if dotenv_path.exists():
            dotenv_vars = dotenv_values(str(dotenv_path))
            env.update({k: v for k, v in dotenv_vars.items() if v is not None})
    return env


def _config_relative(value: str, config: dict) -> Path:
    p = Path(os.path.expanduser(value))
    config_dir = config.get("_config_dir")
    if not p.is_absolute() and config_dir:
        p = Path(config_dir) / p
    return p


# ── Profiles ─────────────────────────────────────────────────────────────


@dataclass
class Profile:
    """A named bundle of variables, headers and a working directory."""

    name: str
    workdir: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    variables: dict[str, Variable] = field(default_factory=dict)


def parse_profile(raw: Any) -> Profile:
    if not isinstance(raw, dict) or not raw.get("name"):
        raise ConfigError(f"profile definition needs a name: {raw!r}")
    name = str(raw["name"])
    variables = raw.get("variables") or {}
    if not isinstance(variables, dict):
        raise ConfigError(f"profile '{name}': variables must be a mapping")
    try:
        parsed = {str(k): parse_variable(str(k), v) for k, v in variables.items()}
    except ConfigError as e:
        raise ConfigError(f"profile '{name}': {e}") from e
    return Profile(
        name=name,
        workdir=str(raw.get("workdir") or ""),
        headers={str(k): str(v) for k, v in (raw.get("headers") or {}).items()},
        variables=parsed,
    )


def dump_profile(profile: Profile) -> dict:
    out: dict[str, Any] = {"name": profile.name}
    if profile.workdir:
        out["workdir"] = profile.workdir
    if profile.headers:
        out["headers"] = dict(profile.headers)
    if profile.variables:
        out["variables"] = {k: dump_variable(v) for k, v in profile.variables.items()}
    return out


def load_profiles(config: dict) -> list[Profile]:
    """Profiles from the config, or a single Default profile."""
    profiles = [parse_profile(p) for p in config.get("profiles") or []]
    names = [p.name for p in profiles]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigError(f"duplicate profile names: {', '.join(duplicates)}")
    return profiles or [Profile(name=DEFAULT_PROFILE)]


def find_profile(profiles: list[Profile], name: str | None) -> Profile | None:
    for p in profiles:
        if p.name == name:
            return p
    return None


def active_profile(profiles: list[Profile], name: str | None) -> Profile:
    """The named profile, falling back to the first one."""
    return find_profile(profiles, name) or profiles[0]


def save_profiles(config: dict, profiles: list[Profile]) -> Path:
    """Write profiles back into the config file, keeping its defaults."""
    path = config.get("_config_path")
    if path is None:
        raise ConfigError("no config file to save profiles to; create .reqchain.yaml first")
    data = {"defaults": config.get("defaults") or {}, "profiles": [dump_profile(p) for p in profiles]}
    with open(path, "w") as f:
        yaml.safe_dump(data, f, sort_keys=False)
    return Path(path)


def resolve_workdir(profile: Profile, config: dict) -> Path:
    """Base directory for relative @depends paths.

    An empty workdir means the current directory; a relative one is
    taken relative to the config file's directory.
    """
    if not profile.workdir:
        return Path.cwd()
    return _config_relative(profile.workdir, config)


# ── Session file ─────────────────────────────────────────────────────────


def resolve_session_path(config: dict) -> Path:
    value = (config.get("defaults") or {}).get("session_file")
    if value:
        return _config_relative(str(value), config)
    return GLOBAL_SESSION


def load_session(path: Path) -> dict:
    """Read ``{"activeProfile": ..., "variables": {...}}``; missing file is empty."""
    if not path.exists():
        return {"activeProfile": "", "variables": {}}
    try:
        data = json.loads(path.read_text() or "{}")
    except json.JSONDecodeError as e:
        raise ConfigError(f"failed to parse session file {path}: {e}", str(path)) from e
    if not isinstance(data, dict):
        raise ConfigError(f"failed to parse session file {path}: expected an object", str(path))
    variables = data.get("variables") or {}
    return {
        "activeProfile": str(data.get("activeProfile") or ""),
        "variables": {str(k): str(v) for k, v in variables.items()},
    }


def save_session(path: Path, active: str, variables: dict[str, str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps({"activeProfile": active, "variables": dict(variables)}, indent=2),
    )


def open_store(
    profile: Profile,
    session: dict,
    env: dict[str, str] | None = None,
    overrides: dict[str, str] | None = None,
) -> VariableStore:
    """Build the store for a profile, restoring the persisted session.

    Session variables persisted for a different profile are dropped.
    """
    variables = session.get("variables") or {}
    if session.get("activeProfile") and session["activeProfile"] != profile.name:
        variables = {}
    return VariableStore(
        profile=profile.variables,
        session=variables,
        overrides=overrides,
        env=env,
    )
