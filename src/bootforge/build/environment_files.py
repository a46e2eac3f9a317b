"""
Static environment files written into every bootstrap's usr/etc.
"""

from pathlib import Path
from typing import Dict, List

PROFILE = """\
# /usr/etc/profile: system-wide profile for the bootstrap environment

export PATH="/usr/bin:/usr/sbin:/bin:/sbin"
umask 022

export EDITOR=vi
export VISUAL=vi
export LANG=C.UTF-8
export LC_ALL=C.UTF-8
export TERM="${TERM:-xterm-256color}"

if [ -z "$HOME" ]; then
    export HOME="/root"
fi

if [ -z "$USER" ]; then
    export USER="$(whoami 2>/dev/null || echo root)"
fi

if [ -z "$HOSTNAME" ]; then
    export HOSTNAME="$(hostname 2>/dev/null || echo localhost)"
fi

if [ -z "$PS1" ]; then
    if [ "$USER" = "root" ]; then
        PS1='# '
    else
        PS1='$ '
    fi
    export PS1
fi

if [ -f "$HOME/.profile" ]; then
    . "$HOME/.profile"
fi

if [ -d /usr/etc/profile.d ]; then
    for script in /usr/etc/profile.d/*.sh; do
        if [ -r "$script" ]; then
            . "$script"
        fi
    done
    unset script
fi
"""

BASH_BASHRC = """\
# /usr/etc/bash.bashrc: system-wide rc for interactive bash shells

[[ $- != *i* ]] && return

export PATH="/usr/bin:/usr/sbin:/bin:/sbin"
export LANG=C.UTF-8
export LC_ALL=C.UTF-8
export TERM="${TERM:-xterm-256color}"

export HISTSIZE=1000
export HISTFILESIZE=2000
export HISTCONTROL=ignoreboth:erasedups
shopt -s histappend
shopt -s checkwinsize
shopt -s extglob
shopt -s globstar 2>/dev/null || true

if [ "$USER" = "root" ] || [ "$UID" = "0" ]; then
    PS1='\\[\\033[0;31m\\]\\u\\[\\033[0m\\]@\\[\\033[0;32m\\]\\h\\[\\033[0m\\]:\\[\\033[0;34m\\]\\w\\[\\033[0m\\]# '
else
    PS1='\\[\\033[0;32m\\]\\u\\[\\033[0m\\]@\\[\\033[0;36m\\]\\h\\[\\033[0m\\]:\\[\\033[0;34m\\]\\w\\[\\033[0m\\]\\$ '
fi
export PS1

alias ll='ls -alF'
alias la='ls -A'
alias l='ls -CF'
alias ..='cd ..'
alias ...='cd ../..'

if [ -f "$HOME/.bashrc" ]; then
    . "$HOME/.bashrc"
fi

if [ -d /usr/etc/bash_completion.d ]; then
    for script in /usr/etc/bash_completion.d/*; do
        if [ -r "$script" ]; then
            . "$script"
        fi
    done
    unset script
fi
"""

INPUTRC = """\
# /usr/etc/inputrc: readline configuration

set meta-flag on
set input-meta on
set output-meta on
set convert-meta off
set colored-stats on
set show-all-if-ambiguous on
set completion-ignore-case on
set mark-symlinked-directories on

"\\e[A": history-search-backward
"\\e[B": history-search-forward
"\\e[1;5C": forward-word
"\\e[1;5D": backward-word
"\\e[H": beginning-of-line
"\\e[F": end-of-line
"\\e[3~": delete-char
"""

MOTD = """\

Welcome to the PRoot-compatible Bootstrap Environment!

This is a minimal Linux environment designed to run in PRoot.

"""

PROFILE_D_BOOTSTRAP = """\
# Bootstrap-specific environment

if [ -z "$BOOTSTRAP_ROOT" ]; then
    export BOOTSTRAP_ROOT="/usr"
fi

case ":$PATH:" in
    *:/usr/bin:*) ;;
    *) export PATH="/usr/bin:$PATH" ;;
esac
"""

# Relative to usr/etc
ENVIRONMENT_FILES: Dict[str, str] = {
    "profile": PROFILE,
    "bash.bashrc": BASH_BASHRC,
    "inputrc": INPUTRC,
    "motd": MOTD,
    "profile.d/00-bootstrap.sh": PROFILE_D_BOOTSTRAP,
}

ENVIRONMENT_DIRS = ("profile.d", "bash_completion.d")


def write_environment_files(etc_dir: Path) -> List[Path]:
    """Write the environment files into a bootstrap's usr/etc.

    Args:
        etc_dir: The bootstrap's usr/etc directory

    Returns:
        Paths of the written files
    """
    for dirname in ENVIRONMENT_DIRS:
        directory = etc_dir / dirname
        directory.mkdir(parents=True, exist_ok=True)
        directory.chmod(0o755)

    written = []
    for rel_path, content in ENVIRONMENT_FILES.items():
        path = etc_dir / rel_path
        path.write_text(content, encoding="utf-8")
        path.chmod(0o644)
        written.append(path)
    return written
