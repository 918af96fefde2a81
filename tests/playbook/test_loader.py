import io
import textwrap
from pathlib import Path

import pytest

from dockmachine.errors import PlaybookDecodeError
from dockmachine.playbook.loader import iter_recipes, load_recipes
from dockmachine.playbook.models import Action, Archive, Recipe

PLAYBOOK = textwrap.dedent("""
    archive:
      - src: files/motd
        dst: /etc/motd
        sudo: true
    provision:
      - name: packages
        ok2fail: true
        action:
          - cmd: apt-get install -y jq
            sudo: true
          - script: scripts/tune.sh
    ---
    provision:
      - name: second document
        action:
          - cmd: echo second
""")


def test_iter_recipes_decodes_each_document():
    recipes = list(iter_recipes(PLAYBOOK))
    assert len(recipes) == 2

    first = recipes[0]
    assert first.archive[0].dest("h") == "/etc/motd"
    assert first.archive[0].sudo
    step = first.provision[0]
    assert step.name == "packages" and step.ok2fail
    assert step.action[0].command() == "apt-get install -y jq"
    assert step.action[1].is_script
    assert recipes[1].provision[0].action[0].cmd == "echo second"


def test_decode_error_surfaces_only_when_reached():
    stream = io.StringIO("provision:\n  - name: ok\n---\nprovision: [unclosed\n")
    recipes = iter_recipes(stream)

    first = next(recipes)
    assert first.provision[0].name == "ok"
    with pytest.raises(PlaybookDecodeError) as ei:
        next(recipes)
    assert ei.value.index == 1


def test_invalid_document_shape_is_a_decode_error():
    with pytest.raises(PlaybookDecodeError) as ei:
        list(iter_recipes("- just\n- a list\n"))
    assert ei.value.index == 0

    with pytest.raises(PlaybookDecodeError):
        list(iter_recipes("provision:\n  - name: x\n    ok2fail: maybe\n"))


def test_empty_documents_are_skipped():
    recipes = list(iter_recipes("---\n---\nprovision:\n  - name: x\n"))
    assert [r.provision[0].name for r in recipes] == ["x"]


def test_load_recipes_reads_file(tmp_path: Path):
    f = tmp_path / "site.yaml"
    f.write_text(PLAYBOOK)
    assert [r.provision[0].name for r in load_recipes(f)] == ["packages", "second document"]


def test_archive_destination_rules():
    assert Archive(src="dist/app.tar").dest("h") == "app.tar"
    assert Archive(src="dist/app.tar", dir="/opt").dest("h") == "/opt/app.tar"
    assert Archive(src="keys/$HOST.key", dir="/etc/keys").dest("web") == "/etc/keys/web.key"
    assert Archive(src="keys/$HOST.key", dst="host.key").source("web") == "keys/web.key"


def test_archive_dir_prefixes_absolute_destination():
    archive = Archive(src="conf/app.conf", dir="/opt", dst="/etc/app.conf")
    assert archive.dest("h") == "/opt/etc/app.conf"
    assert Archive(src="app.conf", dst="/etc/app.conf").dest("h") == "/etc/app.conf"


def test_action_command_prefers_inline_command():
    assert Action(cmd="ls", script="x.sh").command() == "ls"
    assert Action(script="tools/x.sh").command("/var/stage") == "bash /var/stage/x.sh"
    assert Action().command() == ""


def test_single_command_and_script_recipes():
    one = Recipe.for_command("uptime", sudo=True)
    assert one.provision[0].name == "Running one command"
    assert one.provision[0].action[0].sudo

    many = Recipe.for_scripts(["a.sh", "b.sh"])
    assert [p.name for p in many.provision] == ["Running script a.sh", "Running script b.sh"]
