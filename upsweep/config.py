# upsweep/config.py
from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Dict, Iterable, List, Optional, Tuple
import logging
import os
from pathlib import Path

import yaml

from .errors import ConfigurationError

log = logging.getLogger("upsweep.config")

DEFAULT_CONFIG_PATH = os.path.expanduser("~/.upsweep/config.yml")

EXAMPLE_CONFIG = """\
# upsweep configuration

# Steps to skip (step keys, see `upsweep --list-steps`, or custom command names)
# disable:
#   - emacs
#   - gem

# Run only these steps
# only:
#   - system

# Failures of these steps are reported as ignored
# ignore_failures:
#   - firmware

# Do not ask to retry failed steps
# no_retry: true

# Run inside tmux
# run_in_tmux: true
# tmux_arguments: "-S /var/tmp/tmux.sock"

# Say yes to package manager prompts
# assume_yes: true

# Cleanup temporary or old files
# cleanup: true

# Set the terminal title / show the time in step separators
# set_title: true
# display_time: true

# Run upsweep on these hosts over ssh before the local run
# remote_hosts:
#   - "backup-box"
#   - "user@build.example.org"
# remote_path: "~/.local/bin/upsweep"
# ssh_arguments: "-o ConnectTimeout=2"

# Command used to update upsweep itself before the run
# self_update_command: "pipx upgrade upsweep"

# Commands to run before anything else; a failure aborts the run
# pre_commands:
#   "Emacs snapshot": "rm -rf ~/.emacs.d/elpa.bak && cp -rl ~/.emacs.d/elpa ~/.emacs.d/elpa.bak"

# Custom steps, run after the built-in ones
# commands:
#   "Python environment": "~/dev/.env/bin/pip install -i https://pypi.python.org/simple -U --upgrade-strategy eager jupyter"

# Commands to run after the summary
# post_commands:
#   "Notify": "notify-send upsweep done"

# Per-step options
# steps:
#   apt_arguments: "--no-install-recommends"
#   dnf_arguments: "--refresh"
#   yay_arguments: "--devel"
#   brew_greedy_cask: false
#   npm_use_sudo: false
#   flatpak_use_sudo: false
#   firmware_upgrade: false
#   vim_force_plug_update: false
"""

Commands = List[Tuple[str, str]]


# -------------------- models --------------------

@dataclass
class StepOptions:
    """Options the catalog's actions may read. Nothing else is consulted."""
    apt_arguments: str = ""
    dnf_arguments: str = ""
    yay_arguments: str = "--devel"
    brew_greedy_cask: bool = False
    npm_use_sudo: bool = False
    flatpak_use_sudo: bool = False
    firmware_upgrade: bool = False
    vim_force_plug_update: bool = False


@dataclass
class Settings:
    pre_commands: Commands = field(default_factory=list)
    commands: Commands = field(default_factory=list)
    post_commands: Commands = field(default_factory=list)
    disable: List[str] = field(default_factory=list)
    cli_disable: List[str] = field(default_factory=list)
    only: List[str] = field(default_factory=list)
    cli_only: List[str] = field(default_factory=list)
    ignore_failures: List[str] = field(default_factory=list)
    remote_hosts: List[str] = field(default_factory=list)
    remote_host_limit: List[str] = field(default_factory=list)
    remote_path: str = "upsweep"
    ssh_arguments: str = ""
    tmux_arguments: str = ""
    run_in_tmux: bool = False
    no_retry: bool = False
    assume_yes: bool = False
    cleanup: bool = False
    dry_run: bool = False
    set_title: bool = True
    display_time: bool = True
    keep_at_end: bool = False
    show_skipped: bool = False
    self_update_command: str = ""
    steps: StepOptions = field(default_factory=StepOptions)
    source_path: Optional[str] = None

    def should_run(self, key: str, name: Optional[str] = None) -> bool:
        """
        A step runs unless it is disabled, or an `only` list exists and
        does not name it. A step named in `--only` runs even if disabled.
        """
        ids = _ids(key, name)
        only = {o.lower() for o in (self.cli_only + self.only)}
        if only and not (ids & only):
            return False
        disabled = {d.lower() for d in (self.disable + self.cli_disable)}
        if ids & disabled and not (ids & {o.lower() for o in self.cli_only}):
            return False
        return True

    def should_ignore_failure(self, key: str, name: Optional[str] = None) -> bool:
        return bool(_ids(key, name) & {i.lower() for i in self.ignore_failures})

    def selected_remote_hosts(self, own_hostname: Optional[str] = None) -> List[str]:
        """Configured hosts in list order, filtered by the host limit. Duplicates are kept."""
        out = []
        for host in self.remote_hosts:
            if own_hostname and host.rsplit("@", 1)[-1] == own_hostname:
                log.debug("Not contacting %s: this is the local host", host)
                continue
            if self.remote_host_limit and host not in self.remote_host_limit:
                continue
            out.append(host)
        return out


def _ids(key: str, name: Optional[str]) -> set:
    ids = {key.lower()}
    if name:
        ids.add(name.lower())
    return ids


# -------------------- loading --------------------

def _read_yaml(path: Path) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        return {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid YAML: {e}", str(path)) from e
    except OSError as e:
        raise ConfigurationError(f"cannot read: {e}", str(path)) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError("top level must be a mapping", str(path))
    return data


def ensure_config(path: Optional[str] = None) -> Path:
    """Return the config path, writing the example configuration if it does not exist yet."""
    p = Path(path or DEFAULT_CONFIG_PATH)
    if p.exists():
        log.debug("Configuration at %s", p)
        return p
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(EXAMPLE_CONFIG, encoding="utf-8")
        log.debug("Wrote example configuration to %s", p)
    except OSError as e:
        log.debug("Unable to write the example configuration to %s: %s", p, e)
    return p


def _commands(raw: dict, key: str, path: str) -> Commands:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"'{key}' must be a mapping of name -> command", path)
    out: Commands = []
    for name, cmd in value.items():
        if not isinstance(cmd, str) or not cmd.strip():
            raise ConfigurationError(f"'{key}.{name}' must be a non-empty string", path)
        out.append((str(name), cmd))
    return out


def _str_list(raw: dict, key: str, path: str) -> List[str]:
    value = raw.get(key) or []
    if not isinstance(value, list):
        raise ConfigurationError(f"'{key}' must be a list", path)
    return [str(x) for x in value]


def _scalar(raw: dict, key: str, kind: type, default, path: str):
    if key not in raw or raw[key] is None:
        return default
    value = raw[key]
    if kind is str and isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, kind):
        raise ConfigurationError(f"'{key}' must be of type {kind.__name__}", path)
    return value


def _step_options(raw: dict, path: str) -> StepOptions:
    section = raw.get("steps") or {}
    if not isinstance(section, dict):
        raise ConfigurationError("'steps' must be a mapping", path)
    values = {}
    for f in fields(StepOptions):
        if f.name in section:
            kind = type(f.default)
            values[f.name] = _scalar(section, f.name, kind, f.default, f"{path} [steps]")
    unknown = set(section) - {f.name for f in fields(StepOptions)}
    if unknown:
        raise ConfigurationError(f"unknown step options: {', '.join(sorted(unknown))}", path)
    return StepOptions(**values)


def load_settings(path: Optional[str] = None, overrides: Optional[dict] = None) -> Settings:
    """
    Read the YAML configuration and apply command line overrides.
    Boolean flags from the command line can only switch an option on.
    """
    cfg_path = Path(path) if path else ensure_config()
    raw = _read_yaml(cfg_path)
    where = str(cfg_path)

    s = Settings(
        pre_commands=_commands(raw, "pre_commands", where),
        commands=_commands(raw, "commands", where),
        post_commands=_commands(raw, "post_commands", where),
        disable=_str_list(raw, "disable", where),
        only=_str_list(raw, "only", where),
        ignore_failures=_str_list(raw, "ignore_failures", where),
        remote_hosts=_str_list(raw, "remote_hosts", where),
        remote_path=_scalar(raw, "remote_path", str, "upsweep", where),
        ssh_arguments=_scalar(raw, "ssh_arguments", str, "", where),
        tmux_arguments=_scalar(raw, "tmux_arguments", str, "", where),
        run_in_tmux=_scalar(raw, "run_in_tmux", bool, False, where),
        no_retry=_scalar(raw, "no_retry", bool, False, where),
        assume_yes=_scalar(raw, "assume_yes", bool, False, where),
        cleanup=_scalar(raw, "cleanup", bool, False, where),
        set_title=_scalar(raw, "set_title", bool, True, where),
        display_time=_scalar(raw, "display_time", bool, True, where),
        self_update_command=_scalar(raw, "self_update_command", str, "", where),
        steps=_step_options(raw, where),
        source_path=where,
    )

    for k, v in (overrides or {}).items():
        if k in ("cli_disable", "cli_only", "remote_host_limit"):
            setattr(s, k, list(v or []))
        elif isinstance(v, bool):
            if v:
                setattr(s, k, True)
        elif v is not None and hasattr(s, k):
            setattr(s, k, v)

    if os.environ.get("UPSWEEP_KEEP_END") is not None:
        s.keep_at_end = True

    log.debug("Loaded configuration: %s", s)
    return s


def validate_step_names(settings: Settings, known: Iterable[str]) -> None:
    """
    Every `disable`/`only`/`ignore_failures` entry must name a step, by key
    or by display name, or a custom command.
    """
    names = {k.lower() for k in known} | {name.lower() for name, _ in settings.commands}
    for option, label, path in (
        ("disable", "disable", settings.source_path),
        ("only", "only", settings.source_path),
        ("ignore_failures", "ignore_failures", settings.source_path),
        ("cli_disable", "--disable", None),
        ("cli_only", "--only", None),
    ):
        for entry in getattr(settings, option):
            if entry.lower() not in names:
                raise ConfigurationError(f"unknown step '{entry}' in {label}", path)


def edit_command(path: Path) -> List[str]:
    editor = os.environ.get("EDITOR", "vi").split()
    return editor + [str(path)]
