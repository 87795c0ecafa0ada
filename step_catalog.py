# step_catalog.py
from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence
import os
import shlex

from upsweep.errors import SkipStep
from upsweep.executor import Action, command, script
from upsweep.steps import Environment, RunnableAction, Step, StepDescriptor

OS_RELEASE_PATH = "/etc/os-release"

# key -> one line for --list-steps
STEP_KEYS = {
    "remotes": "run upsweep on remote_hosts over ssh",
    "system": "system package manager (apt, dnf, pacman/yay, zypper, xbps, apk, emerge, nixos-rebuild, softwareupdate)",
    "brew_formula": "Homebrew formulae",
    "brew_cask": "Homebrew casks",
    "macports": "MacPorts",
    "nix": "Nix channels and profile",
    "flatpak": "Flatpak user and system installations",
    "snap": "snap packages",
    "shell": "oh-my-zsh",
    "tmux": "tmux plugins (tpm)",
    "tldr": "tldr pages",
    "rustup": "Rust toolchains",
    "cargo": "crates installed with cargo install",
    "emacs": "Emacs packages",
    "pipx": "pipx applications",
    "conda": "conda base environment",
    "vim": "Vim and Neovim plugins",
    "node": "global npm packages",
    "gem": "Ruby gems",
    "gcloud": "Google Cloud SDK components",
    "pihole": "Pi-hole",
    "firmware": "firmware (fwupdmgr)",
    "restarts": "restart services after library upgrades (needrestart)",
    "mas": "Mac App Store",
}


# -------------------- helpers --------------------

def _sudo(env: Environment, *argv: str, **kwargs) -> Action:
    if not env.sudo:
        if not env.dry_run:
            raise SkipStep("No sudo detected")
        return command("sudo", *argv, **kwargs)
    return command(env.sudo, *argv, **kwargs)


def _yes(env: Environment, flag: str) -> List[str]:
    return [flag] if env.yes else []


class BinaryStep(StepDescriptor):
    """Applies when `binary` is on PATH (and, if given, on one of `systems`)."""

    def __init__(
        self,
        key: str,
        binary: str,
        build: Callable[[Environment, str], RunnableAction],
        systems: Optional[Sequence[str]] = None,
    ):
        self.key = key
        self.binary = binary
        self.build = build
        self.systems = systems

    def applies(self, env: Environment) -> bool:
        if self.systems and env.system not in self.systems:
            return False
        return env.which(self.binary) is not None

    def action(self, env: Environment) -> RunnableAction:
        path = env.which(self.binary)
        if path is None:
            raise SkipStep(f"{self.binary} is not installed")
        return self.build(env, path)


# -------------------- system package manager --------------------

def parse_os_release(text: str) -> Dict[str, str]:
    """KEY=value lines of /etc/os-release; quotes stripped, comments ignored."""
    out: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        k, v = line.split("=", 1)
        try:
            parts = shlex.split(v)
        except ValueError:
            parts = [v.strip("\"'")]
        out[k.strip()] = " ".join(parts)
    return out


def distribution(fields: Dict[str, str]) -> Optional[str]:
    """ID_LIKE wins over ID, so derivatives map to their parent family."""
    like = fields.get("ID_LIKE", "").split()
    if "debian" in like or "ubuntu" in like:
        return "debian"
    if "suse" in like:
        return "suse"
    if "arch" in like or "archlinux" in like:
        return "arch"
    if "fedora" in like or "rhel" in like:
        return "redhat"
    return {
        "debian": "debian",
        "ubuntu": "debian",
        "fedora": "redhat",
        "centos": "redhat",
        "ol": "redhat",
        "rhel": "redhat",
        "arch": "arch",
        "anarchy": "arch",
        "manjaro": "arch",
        "opensuse": "suse",
        "opensuse-tumbleweed": "suse",
        "opensuse-leap": "suse",
        "void": "void",
        "alpine": "alpine",
        "gentoo": "gentoo",
        "nixos": "nixos",
    }.get(fields.get("ID", ""))


def _debian(env: Environment) -> List[Action]:
    apt = env.which("apt-fast") or env.which("apt") or "/usr/bin/apt"
    extra = shlex.split(env.options.apt_arguments)
    actions = [
        _sudo(env, apt, "update"),
        _sudo(env, apt, "dist-upgrade", *_yes(env, "-y"), *extra),
    ]
    if env.cleanup:
        actions += [_sudo(env, apt, "clean"), _sudo(env, apt, "autoremove", *_yes(env, "-y"))]
    return actions


def _redhat(env: Environment) -> List[Action]:
    dnf = env.which("dnf") or env.which("yum") or "/usr/bin/yum"
    return [_sudo(env, dnf, "upgrade", *_yes(env, "-y"), *shlex.split(env.options.dnf_arguments))]


def _arch(env: Environment) -> List[Action]:
    yay = env.which("yay")
    if yay:
        actions = [command(yay, "-Syu", *shlex.split(env.options.yay_arguments), *_yes(env, "--noconfirm"))]
        if env.cleanup:
            actions.append(command(yay, "-Scc", *_yes(env, "--noconfirm")))
        return actions
    pacman = env.which("powerpill") or "/usr/bin/pacman"
    actions = [_sudo(env, pacman, "-Syu", *_yes(env, "--noconfirm"))]
    if env.cleanup:
        actions.append(_sudo(env, pacman, "-Scc", *_yes(env, "--noconfirm")))
    return actions


def _suse(env: Environment) -> List[Action]:
    return [_sudo(env, "zypper", "refresh"), _sudo(env, "zypper", "dist-upgrade", *_yes(env, "-y"))]


def _void(env: Environment) -> List[Action]:
    return [_sudo(env, "xbps-install", "-Su", *_yes(env, "-y"))]


def _alpine(env: Environment) -> List[Action]:
    return [_sudo(env, "apk", "update"), _sudo(env, "apk", "upgrade")]


def _gentoo(env: Environment) -> List[Action]:
    return [_sudo(env, "emerge", "-q", "--sync"), _sudo(env, "emerge", "-uDNa", "world")]


def _nixos(env: Environment) -> List[Action]:
    actions = [_sudo(env, "nixos-rebuild", "switch", "--upgrade")]
    if env.cleanup:
        actions.append(_sudo(env, "nix-collect-garbage", "-d"))
    return actions


UPGRADERS: Dict[str, Callable[[Environment], List[Action]]] = {
    "debian": _debian,
    "redhat": _redhat,
    "arch": _arch,
    "suse": _suse,
    "void": _void,
    "alpine": _alpine,
    "gentoo": _gentoo,
    "nixos": _nixos,
}


class SystemStep(StepDescriptor):
    key = "system"

    def __init__(self, os_release: str = OS_RELEASE_PATH):
        self.os_release = os_release

    def applies(self, env: Environment) -> bool:
        return env.system == "linux" and os.path.exists(self.os_release)

    def action(self, env: Environment) -> RunnableAction:
        try:
            fields = parse_os_release(Path(self.os_release).read_text(encoding="utf-8"))
        except OSError as e:
            raise SkipStep(f"cannot read {self.os_release}: {e}") from e
        distro = distribution(fields)
        if distro is None:
            raise SkipStep(f"unsupported distribution {fields.get('ID', '?')!r}")
        return UPGRADERS[distro](env)


# -------------------- editors (embedded scripts) --------------------

EMACS_UPGRADE = """\
(require 'package)
(package-initialize)
(package-refresh-contents)
(if (fboundp 'package-upgrade-all)
    (package-upgrade-all nil)
  (with-current-buffer (package-list-packages-no-fetch)
    (package-menu-mark-upgrades)
    (condition-case nil
        (package-menu-execute t)
      (user-error nil))))
"""

VIM_FRAMEWORKS = (
    # (marker in the rc file, upgrade command)
    ("NeoBundle", "NeoBundleUpdate"),
    ("Vundle", "PluginUpdate"),
    ("plug#begin", "PlugUpgrade | PlugUpdate"),
    ("dein#begin", "call dein#install() | call dein#update()"),
)


def vim_upgrade_command(rc_text: str, force_plug_update: bool = False) -> Optional[str]:
    for marker, cmd in VIM_FRAMEWORKS:
        if marker in rc_text:
            if marker == "plug#begin" and force_plug_update:
                return "PlugUpgrade | PlugUpdate!"
            return cmd
    return None


class VimStep(StepDescriptor):
    key = "vim"

    def __init__(self, binary: str, rc_files: Callable[[Environment], Sequence[Path]]):
        self.binary = binary
        self.rc_files = rc_files

    def _rc(self, env: Environment) -> Optional[Path]:
        for p in self.rc_files(env):
            if p.is_file():
                return p
        return None

    def applies(self, env: Environment) -> bool:
        return env.which(self.binary) is not None and self._rc(env) is not None

    def action(self, env: Environment) -> RunnableAction:
        rc = self._rc(env)
        if rc is None:
            raise SkipStep(f"no {self.binary} configuration file")
        upgrade = vim_upgrade_command(rc.read_text(encoding="utf-8", errors="replace"), env.options.vim_force_plug_update)
        if upgrade is None:
            raise SkipStep("no supported plugin framework")
        return script(
            f"{upgrade}\nquitall\n",
            [env.which(self.binary) or self.binary, "-N", "-u", str(rc), "-e", "-s", "-V1", "-S"],
            suffix=".vim",
        )


class EmacsStep(StepDescriptor):
    key = "emacs"

    def _init_file(self, env: Environment) -> Path:
        return env.home / ".emacs.d" / "init.el"

    def applies(self, env: Environment) -> bool:
        return env.which("emacs") is not None and (env.home / ".emacs.d").is_dir()

    def action(self, env: Environment) -> RunnableAction:
        init = self._init_file(env)
        if not init.is_file():
            raise SkipStep(f"{init} does not exist")
        return script(EMACS_UPGRADE, [env.which("emacs") or "emacs", "--batch", "-l", str(init), "-l"], suffix=".el")


# -------------------- path based steps --------------------

class PathStep(StepDescriptor):
    """Applies when a file below the home directory exists; runs it with `interpreter`."""

    def __init__(self, key: str, relpath: str, interpreter: Sequence[str] = (), args: Sequence[str] = ()):
        self.key = key
        self.relpath = relpath
        self.interpreter = tuple(interpreter)
        self.args = tuple(args)

    def applies(self, env: Environment) -> bool:
        if self.interpreter and env.which(self.interpreter[0]) is None:
            return False
        return (env.home / self.relpath).exists()

    def action(self, env: Environment) -> RunnableAction:
        return command(*self.interpreter, str(env.home / self.relpath), *self.args)


# -------------------- per tool --------------------

def _brew_formula(env: Environment, brew: str) -> List[Action]:
    actions = [command(brew, "update"), command(brew, "upgrade", "--formula")]
    if env.cleanup:
        actions.append(command(brew, "cleanup"))
    return actions


def _brew_cask(env: Environment, brew: str) -> Action:
    argv = [brew, "upgrade", "--cask"]
    if env.options.brew_greedy_cask:
        argv.append("--greedy")
    return command(*argv)


def _macports(env: Environment, port: str) -> List[Action]:
    actions = [_sudo(env, port, "selfupdate"), _sudo(env, port, "-u", "upgrade", "outdated")]
    if env.cleanup:
        actions.append(_sudo(env, port, "-N", "reclaim"))
    return actions


def _nix(env: Environment, nix_env: str) -> List[Action]:
    channel = env.which("nix-channel") or "nix-channel"
    return [command(channel, "--update"), command(nix_env, "--upgrade")]


def _flatpak(env: Environment, flatpak: str) -> List[Action]:
    system = [flatpak, "update", "--system", "-y"]
    return [
        command(flatpak, "update", "--user", "-y"),
        _sudo(env, *system) if env.options.flatpak_use_sudo else command(*system),
    ]


def _snap(env: Environment, snap: str) -> Action:
    running = Path("/var/lib/snapd/snapd.socket").exists() or Path("/run/snapd.socket").exists()
    if not running and not env.dry_run:
        raise SkipStep("snapd is not running")
    return _sudo(env, snap, "refresh")


def _rustup(env: Environment, rustup: str) -> Action:
    return command(rustup, "update")


def _cargo(env: Environment, cargo: str) -> Action:
    if env.which("cargo-install-update") is None and not env.dry_run:
        raise SkipStep("cargo-install-update is not installed")
    return command(cargo, "install-update", "--git", "--all")


def _pipx(env: Environment, pipx: str) -> Action:
    return command(pipx, "upgrade-all")


def _conda(env: Environment, conda: str) -> Action:
    return command(conda, "update", "--all", "-n", "base", *_yes(env, "-y"))


def _npm(env: Environment, npm: str) -> Action:
    if env.options.npm_use_sudo:
        return _sudo(env, npm, "update", "-g")
    return command(npm, "update", "-g")


def _gem(env: Environment, gem: str) -> Action:
    if not (env.home / ".gem").is_dir():
        raise SkipStep("no user gems in ~/.gem")
    return command(gem, "update", "--user-install")


def _tldr(env: Environment, tldr: str) -> Action:
    return command(tldr, "--update")


def _gcloud(env: Environment, gcloud: str) -> Action:
    return command(gcloud, "components", "update", *_yes(env, "--quiet"))


def _pihole(env: Environment, pihole: str) -> Action:
    return _sudo(env, pihole, "-up")


def _fwupdmgr(env: Environment, fwupdmgr: str) -> List[Action]:
    # get-updates exits 2 when there is nothing to apply
    actions = [command(fwupdmgr, "refresh"), command(fwupdmgr, "get-updates", ok_codes=(0, 2))]
    if env.options.firmware_upgrade:
        actions.append(command(fwupdmgr, "update", *_yes(env, "-y")))
    return actions


def _needrestart(env: Environment, needrestart: str) -> Action:
    return _sudo(env, needrestart)


def _mas(env: Environment, mas: str) -> Action:
    return command(mas, "upgrade")


def _softwareupdate(env: Environment, softwareupdate: str) -> Action:
    return command(softwareupdate, "--install", "--all")


# -------------------- registry --------------------

def _vimrc(env: Environment) -> List[Path]:
    return [env.home / ".vimrc", env.home / ".vim" / "vimrc"]


def _nvimrc(env: Environment) -> List[Path]:
    config = Path(os.environ.get("XDG_CONFIG_HOME") or env.home / ".config")
    return [config / "nvim" / "init.vim"]


def default_registry() -> List[Step]:
    """Built-in steps in run order. Custom commands and the final stage follow them."""
    return [
        Step("System update", "system", SystemStep()),
        Step("Brew", "brew_formula", BinaryStep("brew_formula", "brew", _brew_formula, ("darwin", "linux"))),
        Step("Brew Cask", "brew_cask", BinaryStep("brew_cask", "brew", _brew_cask, ("darwin",))),
        Step("MacPorts", "macports", BinaryStep("macports", "port", _macports, ("darwin",))),
        Step("nix", "nix", BinaryStep("nix", "nix-env", _nix)),
        Step("Flatpak", "flatpak", BinaryStep("flatpak", "flatpak", _flatpak, ("linux",))),
        Step("snap", "snap", BinaryStep("snap", "snap", _snap, ("linux",))),
        Step("oh-my-zsh", "shell", PathStep("shell", ".oh-my-zsh/tools/upgrade.sh", ("zsh",))),
        Step("tmux", "tmux", PathStep("tmux", ".tmux/plugins/tpm/bin/update_plugins", (), ("all",))),
        Step("TLDR", "tldr", BinaryStep("tldr", "tldr", _tldr)),
        Step("rustup", "rustup", BinaryStep("rustup", "rustup", _rustup)),
        Step("cargo", "cargo", BinaryStep("cargo", "cargo", _cargo)),
        Step("Emacs", "emacs", EmacsStep()),
        Step("pipx", "pipx", BinaryStep("pipx", "pipx", _pipx)),
        Step("conda", "conda", BinaryStep("conda", "conda", _conda)),
        Step("vim", "vim", VimStep("vim", _vimrc)),
        Step("Neovim", "vim", VimStep("nvim", _nvimrc)),
        Step("npm", "node", BinaryStep("node", "npm", _npm)),
        Step("gem", "gem", BinaryStep("gem", "gem", _gem)),
        Step("gcloud", "gcloud", BinaryStep("gcloud", "gcloud", _gcloud)),
    ]


def final_stage() -> List[Step]:
    """Always last, after the custom commands."""
    return [
        Step("pihole", "pihole", BinaryStep("pihole", "pihole", _pihole, ("linux",))),
        Step("Firmware upgrades", "firmware", BinaryStep("firmware", "fwupdmgr", _fwupdmgr, ("linux",))),
        Step("Restarts", "restarts", BinaryStep("restarts", "needrestart", _needrestart, ("linux",))),
        Step("App Store", "mas", BinaryStep("mas", "mas", _mas, ("darwin",))),
        Step("macOS system update", "system", BinaryStep("system", "softwareupdate", _softwareupdate, ("darwin",))),
    ]


def known_keys() -> List[str]:
    return list(STEP_KEYS)
