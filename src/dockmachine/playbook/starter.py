# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/dockmachine/playbook/starter.py

"""
Starter playbook for ``machine gen-recipe``: a three-document compose.yml
plus the scripts and daemon.json it references, ready for ``exec playbook``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List

from dockmachine.engine.provisioner import INSTALL_DOCKER_STEPS

log = logging.getLogger("dockmachine")

COMPOSE_FILE = "compose.yml"

COMPOSE = """\
---
# document 1: base system and Docker Engine
provision:
- name: Install utility package
  action:
    - script: 00-install-pkg
      sudo: true

- name: Install Docker Engine
  action:
    - script: 01-install-docker-engine
      sudo: true

- name: Configure system setting
  action:
    - script: 02-config-system
      sudo: true

- name: Configure Docker Volume
  action:
    - cmd: 'pvcreate /dev/xvdb && vgcreate data /dev/xvdb && lvcreate -l 100%FREE -n docker data'
      sudo: true
    - cmd: 'mkfs.ext4 /dev/data/docker'
      sudo: true
    - cmd: 'mkdir -p /data && echo "/dev/mapper/data-docker /data ext4 rw 0 0" >>/etc/fstab'
      sudo: true

- name: Configure Docker Engine
  archive:
    - src: docker.daemon.json
      dst: /etc/docker/daemon.json
      sudo: true
  action:
    - cmd: 'systemctl stop docker'
      sudo: true
    - cmd: 'rm -f /etc/docker/key.json'
      sudo: true
    - cmd: 'rm -rf /var/lib/docker'
      sudo: true

---
# document 2: runs only once document 1 succeeded on every host
provision:
- name: Configure swap
  action:
    - cmd: 'fallocate -l 8G /swapfile && chmod 600 /swapfile && mkswap /swapfile'
      sudo: true
    - cmd: 'echo "/swapfile none swap sw 0 0" >>/etc/fstab'
      sudo: true

---
provision:
- name: Clean up and Shutdown
  action:
    - cmd: shutdown -h now
      sudo: true
"""

INSTALL_PKG = """\
#!/bin/bash
set -e

# common utility packages
apt-get update && apt-get upgrade -y && apt-get install -y \\
    curl \\
    htop \\
    lvm2 \\
    chrony \\
    jq
"""

CONFIGURE_SYSTEM = """\
#!/bin/bash
set -e

cat <<\\EOF >/etc/sysctl.d/60-machine.conf
vm.overcommit_memory = 1
net.ipv4.ip_local_port_range = 1024 65535
net.ipv4.tcp_rmem = 4096 4096 16777216
net.ipv4.tcp_wmem = 4096 4096 16777216
net.ipv4.tcp_max_syn_backlog = 4096
net.ipv4.tcp_syncookies = 1
net.core.somaxconn = 1024
fs.file-max = 100000
EOF
sysctl --system

echo "* - nofile 100000" >>/etc/security/limits.conf

# transparent huge pages off before docker starts
cat <<\\EOF >/etc/systemd/system/disable-transparent-hugepages.service
[Unit]
Description=Disable Linux transparent huge pages
Before=docker.service

[Service]
Type=oneshot
ExecStart=/bin/sh -c 'echo never >/sys/kernel/mm/transparent_hugepage/enabled && echo never >/sys/kernel/mm/transparent_hugepage/defrag'

[Install]
WantedBy=multi-user.target
EOF
systemctl daemon-reload
systemctl enable --now disable-transparent-hugepages
"""

DOCKER_DAEMON_CONFIG = """\
{
    "hosts": [
        "unix:///var/run/docker.sock"
    ],
    "data-root": "/data"
}
"""


def _install_docker_engine() -> str:
    return "#!/bin/bash\nset -e\n\n" + "\n".join(INSTALL_DOCKER_STEPS) + "\n"


def starter_files() -> Dict[str, str]:
    """File name -> content, compose.yml first."""
    return {
        COMPOSE_FILE: COMPOSE,
        "00-install-pkg": INSTALL_PKG,
        "01-install-docker-engine": _install_docker_engine(),
        "02-config-system": CONFIGURE_SYSTEM,
        "docker.daemon.json": DOCKER_DAEMON_CONFIG,
    }


def write_starter_recipe(dest: str | Path, *, overwrite: bool = False) -> List[Path]:
    """
    Write the starter files into ``dest``. Existing files raise
    FileExistsError unless ``overwrite`` is set; nothing is written then.
    """
    dest = Path(dest)
    dest.mkdir(parents=True, exist_ok=True)
    files = starter_files()

    if not overwrite:
        taken = [name for name in files if (dest / name).exists()]
        if taken:
            raise FileExistsError(f"{dest}: already has {', '.join(taken)} (use --force to replace)")

    written = []
    for name, content in files.items():
        path = dest / name
        path.write_text(content, encoding="utf-8")
        log.debug("wrote %s", path)
        written.append(path)
    return written
