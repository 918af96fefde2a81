# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/dockmachine/playbook/loader.py

import logging
from pathlib import Path
from typing import IO, Iterator, Union

import yaml
from pydantic import ValidationError

from dockmachine.errors import PlaybookDecodeError
from .models import Recipe

log = logging.getLogger("dockmachine")


def iter_recipes(stream: Union[str, IO[str]]) -> Iterator[Recipe]:
    """
    Decode a YAML stream lazily, one Recipe per document. A malformed
    document raises PlaybookDecodeError only when it is reached, so the
    caller can finish the documents before it.
    """
    docs = yaml.safe_load_all(stream)
    index = 0
    while True:
        try:
            data = next(docs)
        except StopIteration:
            return
        except yaml.YAMLError as exc:
            raise PlaybookDecodeError(index, str(exc)) from exc

        if data is None:
            log.debug("skipping empty playbook document %d", index)
            index += 1
            continue
        if not isinstance(data, dict):
            raise PlaybookDecodeError(index, f"expected a mapping, got {type(data).__name__}")
        try:
            yield Recipe.model_validate(data)
        except ValidationError as exc:
            raise PlaybookDecodeError(index, str(exc)) from exc
        index += 1


def load_recipes(path: Union[str, Path]) -> Iterator[Recipe]:
    """Yield the recipes of a playbook file, keeping it open while iterating."""
    with open(path, "r", encoding="utf-8") as f:
        yield from iter_recipes(f)
