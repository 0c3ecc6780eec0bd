"""reqchain CLI - run request files with profiles, sessions and chaining."""

import logging
import sys
from pathlib import Path

import click

TOOL_HELP = """\
reqchain — run API requests kept as plain files.

Each request lives in its own .http or .yaml file. Files declare what
they depend on and which values to pull out of their responses; reqchain
runs the dependencies first and feeds the values forward.

\b
RUNNING
───────
  reqchain requests/get-user.http
  reqchain requests/get-user.http -p staging
  reqchain requests/get-user.http -e userId=42
  reqchain requests/get-user.http --plan        # show order, run nothing

\b
REQUEST FILES (.http)
─────────────────────
  \b
  # @depends login.http
  # @extract userId user.id
  GET {{baseUrl}}/users/{{userId}}
  Authorization: Bearer {{token}}

  Blank line after the headers starts the body.
  Several requests may share a file, separated by "### name";
  only the first one takes part in chaining.

\b
REQUEST FILES (.yaml)
─────────────────────
  \b
  method: POST
  url: "{{baseUrl}}/auth/login"
  depends: [get-csrf.http]
  extract:
    token: access_token
  body:
    email: "{{email}}"

\b
ANNOTATIONS
───────────
  \b
  # @depends <path> [<path> ...]       run these files first (repeatable)
  # @extract <name> <jmespath>         store a response value in the session
  # @query <jmespath>                  default output query for this file

  Dependency paths are relative to the profile's workdir.
  Circular dependencies are detected and reported.
  A failed step stops the chain; values extracted by earlier steps stay
  in the session.

\b
PLACEHOLDERS
────────────
  \b
  {{name}}           variable: -e flag, then session, then profile
  {{env.NAME}}       environment variable (or env_file entry)
  $(command)         shell command output, trimmed (5s timeout)

  Unknown {{names}} are left as they are.

\b
SESSION
───────
  \b
  reqchain --show-session
  reqchain --set token=abc --unset old
  reqchain --clear-session

  The session is cleared whenever the active profile changes.

\b
PROFILES
────────
  \b
  reqchain --list-profiles
  reqchain -p prod                       switch profile (clears session)
  reqchain --select region=us            pick a multi-value option

\b
CONFIG FILE (.reqchain.yaml)
────────────────────────────
  Config resolution order:
    1. -c/--config flag (explicit path)
    2. .reqchain.yaml / .reqchain.yml / reqchain.yaml / reqchain.yml in CWD
    3. ~/.reqchain/config.yaml (global)

  \b
  defaults:
    env_file: .env
    timeout: 30
    shell_timeout: 5
  profiles:
    - name: dev
      workdir: requests
      headers:
        X-Env: dev
      variables:
        baseUrl: http://localhost:3000
        region:
          options: [eu, us]
          active: 0
          aliases: {europe: 0}
        password:
          interactive: true
          value: changeme
"""


@click.command(
    cls=click.Command,
    help=TOOL_HELP,
    context_settings={"max_content_width": 88},
)
@click.argument("request_file", required=False)
@click.option(
    "-c",
    "--config",
    "config_file",
    default=None,
    help="Config file path. Default: .reqchain.yaml in CWD, then ~/.reqchain/config.yaml.",
)
@click.option(
    "-p",
    "--profile",
    "profile_name",
    default=None,
    help="Switch the active profile. Clears session variables.",
)
@click.option(
    "-e",
    "--var",
    multiple=True,
    help="Variable as name=value. Overrides session and profile for this run. Repeatable.",
)
@click.option(
    "-q",
    "--query",
    default=None,
    help="JMESPath expression applied to the final JSON body.",
)
@click.option(
    "--timeout",
    type=int,
    default=None,
    help="Request timeout in seconds. Default: 30.",
)
@click.option(
    "--verbose",
    is_flag=True,
    default=False,
    help="Include response headers in output.",
)
@click.option(
    "--raw",
    is_flag=True,
    default=False,
    help="Output raw JSON body only. Useful for piping.",
)
@click.option(
    "--plan",
    "show_plan",
    is_flag=True,
    default=False,
    help="Print the execution order of the chain without running it.",
)
@click.option(
    "--no-input",
    is_flag=True,
    default=False,
    help="Never prompt for interactive variables; use their defaults.",
)
@click.option(
    "--list-profiles",
    "show_list_profiles",
    is_flag=True,
    default=False,
    help="List profiles and their variables.",
)
@click.option(
    "--show-session",
    is_flag=True,
    default=False,
    help="Show session variables.",
)
@click.option(
    "--set",
    "set_vars",
    multiple=True,
    metavar="NAME=VALUE",
    help="Set a session variable. Repeatable.",
)
@click.option(
    "--unset",
    "unset_vars",
    multiple=True,
    metavar="NAME",
    help="Remove a session variable. Repeatable.",
)
@click.option(
    "--clear-session",
    is_flag=True,
    default=False,
    help="Remove all session variables.",
)
@click.option(
    "--select",
    "select_opts",
    multiple=True,
    metavar="NAME=OPTION",
    help="Choose the active option of a multi-value profile variable "
    "(option text, alias or index). Saved to the config file. Repeatable.",
)
@click.option("--debug", is_flag=True, default=False, help="Log engine details to stderr.")
def main(
    request_file,
    config_file,
    profile_name,
    var,
    query,
    timeout,
    verbose,
    raw,
    show_plan,
    no_input,
    show_list_profiles,
    show_session,
    set_vars,
    unset_vars,
    clear_session,
    select_opts,
    debug,
):
    """Run request files with minimal, structured output."""
    from reqchain.core import (
        active_profile,
        find_profile,
        load_config,
        load_env,
        load_profiles,
        load_session,
        open_store,
        resolve_config_path,
        resolve_session_path,
        save_session,
    )
    from reqchain.errors import ReqchainError

    if debug:
        logging.basicConfig(
            level=logging.DEBUG,
            stream=sys.stderr,
            format="%(levelname)s %(name)s: %(message)s",
        )

    # --- Load config, profiles, session ---
    try:
        config_path = resolve_config_path(config_file)
        config = load_config(config_path)
        defaults = config.get("defaults", {})
        env = load_env(defaults.get("env_file"), config.get("_config_dir") or ".")
        profiles = load_profiles(config)
        session_path = resolve_session_path(config)
        session = load_session(session_path)
    except ReqchainError as e:
        _fail(str(e))

    overrides = _parse_pairs(var, "-e")
    profile = active_profile(profiles, session["activeProfile"])
    store = open_store(profile, session, env, overrides)

    if profile_name and profile_name != session["activeProfile"]:
        target = find_profile(profiles, profile_name)
        if target is None:
            names = ", ".join(p.name for p in profiles)
            _fail(f"Profile '{profile_name}' not found. Available: {names}")
        profile = target
        store.switch_profile(profile.variables)
        save_session(session_path, profile.name, store.session)
        click.echo(f"Active profile: {profile.name} (session cleared)", err=True)

    for err in store.validate_all():
        click.echo(f"warning: profile '{profile.name}': {err}", err=True)

    # --- Dispatch ---

    if show_list_profiles:
        _cmd_list_profiles(profiles, profile)
        return

    if select_opts:
        _cmd_select(select_opts, store, config, profiles)

    if set_vars or unset_vars or clear_session:
        _cmd_edit_session(store, set_vars, unset_vars, clear_session)
        save_session(session_path, profile.name, store.session)

    if show_session:
        _cmd_show_session(store, profile)
        return

    if request_file:
        _cmd_run(
            request_file,
            store,
            profile,
            config,
            defaults,
            session_path,
            query=query,
            timeout=timeout,
            verbose=verbose,
            raw=raw,
            show_plan=show_plan,
            no_input=no_input,
        )
        return

    if profile_name or select_opts or set_vars or unset_vars or clear_session:
        return

    # Nothing matched: show help
    ctx = click.get_current_context()
    click.echo(ctx.get_help())
    ctx.exit(1)


# ── Subcommand implementations ──────────────────────────────────────────


def _cmd_run(
    request_file,
    store,
    profile,
    config,
    defaults,
    session_path,
    query=None,
    timeout=None,
    verbose=False,
    raw=False,
    show_plan=False,
    no_input=False,
):
    from reqchain.chain import ChainExecutor, describe_node
    from reqchain.core import resolve_workdir, save_session
    from reqchain.errors import ReqchainError
    from reqchain.filters import format_output, format_step

    workdir = resolve_workdir(profile, config)
    target = Path(request_file)
    if not target.is_absolute() and target.exists():
        target = target.resolve()

    def _on_step(index, node, result):
        click.echo(format_step(node.label, result))

    chain = ChainExecutor(
        store,
        workdir=str(workdir),
        timeout=_resolve_timeout(timeout, defaults.get("timeout")),
        shell_timeout=float(defaults.get("shell_timeout") or 5),
        default_headers=profile.headers,
        prompt=None if no_input else _prompt,
        on_step=_on_step,
    )

    if show_plan:
        try:
            nodes = chain.plan(str(target))
        except ReqchainError as e:
            _fail(str(e))
        click.echo(f"Execution plan ({len(nodes)} requests, workdir {workdir}):")
        for i, node in enumerate(nodes, start=1):
            req = node.request
            info = describe_node(node)
            line = f"  {i}. {node.label}  {req.method} {req.url}"
            click.echo(f"{line}  [{info}]" if info else line)
        return

    try:
        result = chain.run(str(target))
    except ReqchainError as e:
        _fail(str(e))
    except KeyboardInterrupt:
        _fail("Chain interrupted")
    finally:
        save_session(session_path, profile.name, store.session)

    node = chain.nodes[-1]
    try:
        output = format_output(result, query=query or node.query, verbose=verbose, raw=raw)
    except ValueError as e:
        _fail(str(e))
    click.echo(output)


def _cmd_list_profiles(profiles, current):
    from reqchain.variables import Interactive, Literal, MultiValue

    for p in profiles:
        marker = "*" if p.name == current.name else " "
        workdir = p.workdir or "."
        click.echo(f"{marker} {p.name}  (workdir: {workdir})")
        for name, v in p.variables.items():
            if isinstance(v, Interactive):
                if isinstance(v.default, Literal):
                    detail = f"<prompt, default: {v.default.value}>"
                elif isinstance(v.default, MultiValue):
                    detail = f"<prompt, options: {', '.join(v.default.options)}>"
                else:
                    detail = "<prompt>"
            elif isinstance(v, MultiValue):
                opts = ", ".join(
                    f"[{o}]" if i == v.active else o for i, o in enumerate(v.options)
                )
                detail = f"{opts}" + (f"  — {v.description}" if v.description else "")
            else:
                detail = v.value
            click.echo(f"    {name} = {detail}")


def _cmd_select(select_opts, store, config, profiles):
    from reqchain.core import save_profiles
    from reqchain.errors import ReqchainError

    for name, choice in _parse_pairs(select_opts, "--select").items():
        try:
            value = store.select(name, choice)
        except ReqchainError as e:
            _fail(str(e))
        click.echo(f"{name} = {value}", err=True)
    try:
        path = save_profiles(config, profiles)
    except ReqchainError as e:
        _fail(str(e))
    click.echo(f"Profiles saved: {path}", err=True)


def _cmd_edit_session(store, set_vars, unset_vars, clear_session):
    if clear_session:
        store.clear_session()
    for name, value in _parse_pairs(set_vars, "--set").items():
        store.set_session(name, value)
    for name in unset_vars:
        if not store.unset_session(name):
            click.echo(f"warning: session variable '{name}' not set", err=True)


def _cmd_show_session(store, profile):
    if not store.session:
        click.echo(f"No session variables (profile: {profile.name}).")
        return
    click.echo(f"Session variables (profile: {profile.name}):")
    for name, value in store.session.items():
        click.echo(f"  {name}={value}")


# ── Helpers ──────────────────────────────────────────────────────────────


def _parse_pairs(specs, flag):
    """Parse name=value specs into a dict."""
    pairs = {}
    for spec in specs:
        if "=" not in spec:
            _fail(f"{flag} expects name=value, got '{spec}'")
        k, v = spec.split("=", 1)
        pairs[k.strip()] = v.strip()
    return pairs


def _prompt(name, default):
    return click.prompt(name, default=default, err=True)


def _resolve_timeout(*sources, default=30):
    """Return the first truthy timeout from sources, or default."""
    for t in sources:
        if t:
            return int(t)
    return default


def _fail(message):
    click.echo(f"ERROR: {message}", err=True)
    sys.exit(1)
