"""Tests for config file resolution, profiles and the session file."""

import json

import pytest
import yaml

from reqchain import core
from reqchain.errors import ConfigError
from reqchain.variables import Interactive, Literal, MultiValue


def _write_config(path, profiles=None, **defaults):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump({"defaults": defaults, "profiles": profiles or []}))
    return path


# ── resolve_config_path ─────────────────────────────────────────────────


class TestResolveConfigPath:
    def test_explicit_flag_takes_priority(self, tmp_project, global_reqchain_dir):
        explicit = _write_config(tmp_project / "custom" / "my.yaml")
        _write_config(tmp_project / ".reqchain.yaml")
        _write_config(global_reqchain_dir / "config.yaml")
        assert core.resolve_config_path(str(explicit)) == explicit.resolve()

    def test_explicit_flag_nonexistent_returns_none(self, tmp_project, global_reqchain_dir):
        _write_config(tmp_project / ".reqchain.yaml")
        assert core.resolve_config_path("/nonexistent/config.yaml") is None

    @pytest.mark.parametrize("name", core.CWD_CONFIG_CANDIDATES)
    def test_cwd_variants(self, name, tmp_project, global_reqchain_dir):
        _write_config(tmp_project / name)
        assert core.resolve_config_path(None) == (tmp_project / name).resolve()

    def test_cwd_wins_over_global(self, tmp_project, global_reqchain_dir):
        _write_config(tmp_project / ".reqchain.yaml")
        _write_config(global_reqchain_dir / "config.yaml")
        assert core.resolve_config_path(None) == (tmp_project / ".reqchain.yaml").resolve()

    def test_global_fallback(self, tmp_project, global_reqchain_dir):
        _write_config(global_reqchain_dir / "config.yaml")
        assert core.resolve_config_path(None) == (global_reqchain_dir / "config.yaml").resolve()

    def test_nothing_found(self, tmp_project, global_reqchain_dir):
        assert core.resolve_config_path(None) is None


# ── load_config ──────────────────────────────────────────────────────────


class TestLoadConfig:
    def test_missing_is_empty(self, tmp_path):
        config = core.load_config(None)
        assert config["defaults"] == {} and config["profiles"] == []

    def test_records_location(self, tmp_path):
        path = _write_config(tmp_path / "c.yaml", timeout=10)
        config = core.load_config(path)
        assert config["defaults"] == {"timeout": 10}
        assert config["_config_dir"] == tmp_path.resolve()
        assert config["_config_path"] == path.resolve()

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text("defaults: [unclosed\n")
        with pytest.raises(ConfigError, match="invalid config"):
            core.load_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="expected a mapping"):
            core.load_config(path)

    def test_profiles_must_be_list(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text("profiles:\n  dev: {}\n")
        with pytest.raises(ConfigError, match="must be a list"):
            core.load_config(path)


class TestLoadEnv:
    def test_env_file_overrides_environ(self, tmp_path, monkeypatch):
        monkeypatch.setenv("API_KEY", "from-os")
        (tmp_path / ".env").write_text("API_KEY=from-file\nOTHER=1\n")
        env = core.load_env(".env", tmp_path)
        assert env["API_KEY"] == "from-file"
        assert env["OTHER"] == "1"

    def test_missing_env_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("API_KEY", "from-os")
        assert core.load_env("nope.env", tmp_path)["API_KEY"] == "from-os"


# ── Profiles ─────────────────────────────────────────────────────────────


class TestProfiles:
    def test_default_when_none_configured(self):
        profiles = core.load_profiles({"profiles": []})
        assert [p.name for p in profiles] == ["Default"]

    def test_parse_profile(self):
        profile = core.parse_profile(
            {
                "name": "dev",
                "workdir": "requests",
                "headers": {"X-Env": "dev"},
                "variables": {
                    "baseUrl": "http://localhost",
                    "region": {"options": ["eu", "us"], "active": 1},
                    "pw": {"interactive": True, "value": "x"},
                },
            },
        )
        assert profile.workdir == "requests"
        assert profile.headers == {"X-Env": "dev"}
        assert profile.variables["baseUrl"] == Literal("http://localhost")
        assert isinstance(profile.variables["region"], MultiValue)
        assert isinstance(profile.variables["pw"], Interactive)

    def test_nameless_profile(self):
        with pytest.raises(ConfigError, match="needs a name"):
            core.parse_profile({"variables": {}})

    def test_bad_variable_names_profile(self):
        with pytest.raises(ConfigError, match="profile 'dev'"):
            core.parse_profile({"name": "dev", "variables": {"x": {"foo": 1}}})

    def test_duplicate_names(self):
        with pytest.raises(ConfigError, match="duplicate profile names: dev"):
            core.load_profiles({"profiles": [{"name": "dev"}, {"name": "dev"}]})

    def test_active_profile_fallback_to_first(self):
        profiles = core.load_profiles({"profiles": [{"name": "a"}, {"name": "b"}]})
        assert core.active_profile(profiles, "b").name == "b"
        assert core.active_profile(profiles, "gone").name == "a"
        assert core.active_profile(profiles, "").name == "a"

    def test_save_profiles_round_trip(self, tmp_path):
        raw = [
            {
                "name": "dev",
                "variables": {"region": {"options": ["eu", "us"], "active": 0}},
            },
        ]
        path = _write_config(tmp_path / "c.yaml", profiles=raw, timeout=5)
        config = core.load_config(path)
        profiles = core.load_profiles(config)
        profiles[0].variables["region"].active = 1
        core.save_profiles(config, profiles)

        data = yaml.safe_load(path.read_text())
        assert data["defaults"] == {"timeout": 5}
        assert data["profiles"][0]["variables"]["region"]["active"] == 1

    def test_save_without_config_file(self):
        with pytest.raises(ConfigError, match="no config file"):
            core.save_profiles(core.load_config(None), [core.Profile("x")])


class TestResolveWorkdir:
    def test_empty_is_cwd(self, tmp_project):
        assert core.resolve_workdir(core.Profile("p"), {}) == tmp_project

    def test_relative_to_config_dir(self, tmp_path):
        config = {"_config_dir": tmp_path}
        assert core.resolve_workdir(core.Profile("p", workdir="reqs"), config) == tmp_path / "reqs"

    def test_absolute_kept(self, tmp_path):
        profile = core.Profile("p", workdir=str(tmp_path / "abs"))
        assert core.resolve_workdir(profile, {"_config_dir": "/elsewhere"}) == tmp_path / "abs"


# ── Session file ─────────────────────────────────────────────────────────


class TestSessionFile:
    def test_default_location(self, global_reqchain_dir):
        assert core.resolve_session_path({"defaults": {}}) == global_reqchain_dir / "session.json"

    def test_configured_location(self, tmp_path):
        config = {"defaults": {"session_file": ".session.json"}, "_config_dir": tmp_path}
        assert core.resolve_session_path(config) == tmp_path / ".session.json"

    def test_missing_file_is_empty(self, tmp_path):
        assert core.load_session(tmp_path / "s.json") == {"activeProfile": "", "variables": {}}

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "nested" / "s.json"
        core.save_session(path, "dev", {"token": "abc"})
        assert json.loads(path.read_text()) == {
            "activeProfile": "dev",
            "variables": {"token": "abc"},
        }
        assert core.load_session(path)["variables"] == {"token": "abc"}

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "s.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError, match="failed to parse session file"):
            core.load_session(path)


class TestOpenStore:
    def test_restores_session_for_same_profile(self):
        profile = core.Profile("dev", variables={"x": Literal("1")})
        store = core.open_store(profile, {"activeProfile": "dev", "variables": {"token": "t"}})
        assert store.get("token") == ("t", True)

    def test_drops_session_of_other_profile(self):
        store = core.open_store(
            core.Profile("prod"),
            {"activeProfile": "dev", "variables": {"token": "t"}},
        )
        assert store.session == {}

    def test_overrides_and_env(self):
        store = core.open_store(
            core.Profile("dev"),
            {"activeProfile": "", "variables": {}},
            env={"HOME": "/h"},
            overrides={"id": "9"},
        )
        assert store.get("id") == ("9", True)
        assert store.get("env.HOME") == ("/h", True)
