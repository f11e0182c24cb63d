"""YAML command documents.

An ffmpeg command can be written down as a YAML (or plain dict) document
and turned into an :class:`FFmpegCommand`. Maps refer to inputs by their
index in ``inputs``::

    flags: ["-y", "-loglevel", "error"]
    inputs:
      - file: sine=frequency=440:duration=1
        format: lavfi
    filter_graph:
      - - name: volume
          inputs: ["0:a"]
          options: {volume: "0.5"}
          outputs: [quiet]
    outputs:
      - file: out.wav
        format: wav
        metadata: {title: Tone}
        maps:
          - specifier: "[quiet]"
            codec: pcm_s16le

Only path endpoints can be expressed; streams are attached in code after
loading.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml

from ..config import FFmpegConfig
from ..errors import ResolutionError
from ..metadata import Metadata
from .command_builder import FFmpegCommand, Filter, FilterChain, FilterGraph, Input, Map, Output

logger = logging.getLogger("ffcat")

# ------------------------------------------------------------------ #
#   Field helpers                                                    #
# ------------------------------------------------------------------ #


def _str_list(data: dict[str, Any], key: str, where: str) -> list[str]:
    value = data.get(key) or []
    if not isinstance(value, list):
        raise ValueError(f"{where}: '{key}' must be a list")
    return [str(v) for v in value]


def _str_dict(data: dict[str, Any], key: str, where: str) -> dict[str, str]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"{where}: '{key}' must be a mapping")
    return {str(k): str(v) for k, v in value.items()}


def _mapping(data: Any, where: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError(f"{where}: must be a mapping")
    return data


def _parse_filter(data: Any, where: str) -> Filter:
    data = _mapping(data, where)
    name = data.get("name")
    if not name:
        raise ValueError(f"{where}: missing 'name'")
    return Filter(
        name=str(name),
        options=_str_dict(data, "options", where),
        inputs=_str_list(data, "inputs", where),
        outputs=_str_list(data, "outputs", where),
    )


def _parse_map(data: Any, inputs: list[Input], where: str) -> Map:
    data = _mapping(data, where)
    inp = None
    if data.get("input") is not None:
        index = data["input"]
        if not isinstance(index, int) or not 0 <= index < len(inputs):
            raise ResolutionError(f"{where}: no input with index {index!r}")
        inp = inputs[index]
    return Map(
        input=inp,
        specifier=str(data.get("specifier", "")),
        codec=str(data.get("codec", "")),
        options=_str_dict(data, "options", where),
        flags=_str_list(data, "flags", where),
    )


# ------------------------------------------------------------------ #
#   Document → command                                               #
# ------------------------------------------------------------------ #


def command_from_dict(data: Any, config: Optional[FFmpegConfig] = None) -> FFmpegCommand:
    """Build a command from a decoded document.

    Raises:
        ValueError: If the document is malformed.
        ResolutionError: If a map refers to an input index that doesn't exist.
    """
    data = _mapping(data, "command")

    inputs = []
    for i, raw in enumerate(data.get("inputs") or []):
        where = f"inputs[{i}]"
        raw = _mapping(raw, where)
        if not raw.get("file"):
            raise ValueError(f"{where}: missing 'file'")
        inputs.append(Input(
            file=str(raw["file"]),
            format=str(raw.get("format", "")),
            options=_str_dict(raw, "options", where),
            flags=_str_list(raw, "flags", where),
        ))

    graph = None
    if data.get("filter_graph"):
        graph = FilterGraph()
        for c, raw_chain in enumerate(data["filter_graph"]):
            if not isinstance(raw_chain, list):
                raise ValueError(f"filter_graph[{c}]: must be a list of filters")
            graph.chains.append(FilterChain([
                _parse_filter(raw_filter, f"filter_graph[{c}][{f}]")
                for f, raw_filter in enumerate(raw_chain)
            ]))

    outputs = []
    for o, raw in enumerate(data.get("outputs") or []):
        where = f"outputs[{o}]"
        raw = _mapping(raw, where)
        if not raw.get("file"):
            raise ValueError(f"{where}: missing 'file'")
        metadata = None
        if raw.get("metadata"):
            metadata = Metadata(**_str_dict(raw, "metadata", where))
        outputs.append(Output(
            file=str(raw["file"]),
            maps=[
                _parse_map(raw_map, inputs, f"{where}.maps[{m}]")
                for m, raw_map in enumerate(raw.get("maps") or [])
            ],
            format=str(raw.get("format", "")),
            metadata=metadata,
            options=_str_dict(raw, "options", where),
            flags=_str_list(raw, "flags", where),
        ))

    kwargs: dict[str, Any] = {}
    if config is not None:
        kwargs["config"] = config
    return FFmpegCommand(
        inputs=inputs,
        outputs=outputs,
        filter_graph=graph,
        flags=_str_list(data, "flags", "command"),
        **kwargs,
    )


def command_to_dict(command: FFmpegCommand) -> dict[str, Any]:
    """Render a command with path endpoints back into a document.

    Raises:
        ValueError: If an endpoint is a stream.
        ResolutionError: If a map refers to an input not in the command.
    """
    positions = {id(inp): i for i, inp in enumerate(command.inputs)}

    def endpoint(file: Any) -> str:
        if not isinstance(file, (str, os.PathLike)):
            raise ValueError(f"Only path endpoints can be saved, got {type(file).__name__}")
        return os.fspath(file)

    def map_doc(m: Map) -> dict[str, Any]:
        doc: dict[str, Any] = {}
        if m.input is not None:
            if id(m.input) not in positions:
                raise ResolutionError(f"map refers to an input not in this command: {m.input!r}")
            doc["input"] = positions[id(m.input)]
        for key in ("specifier", "codec", "options", "flags"):
            if getattr(m, key):
                doc[key] = getattr(m, key)
        return doc

    doc: dict[str, Any] = {}
    if command.flags:
        doc["flags"] = list(command.flags)
    doc["inputs"] = [
        {k: v for k, v in {
            "file": endpoint(inp.file),
            "format": inp.format,
            "options": dict(inp.options),
            "flags": list(inp.flags),
        }.items() if v}
        for inp in command.inputs
    ]
    if command.filter_graph is not None:
        doc["filter_graph"] = [
            [
                {k: v for k, v in {
                    "name": f.name,
                    "inputs": list(f.inputs),
                    "options": dict(f.options),
                    "outputs": list(f.outputs),
                }.items() if v}
                for f in chain.filters
            ]
            for chain in command.filter_graph.chains
        ]
    outputs = []
    for out in command.outputs:
        metadata = out.metadata.to_map() if isinstance(out.metadata, Metadata) else out.metadata
        outputs.append({k: v for k, v in {
            "file": endpoint(out.file),
            "format": out.format,
            "metadata": dict(metadata or {}),
            "options": dict(out.options),
            "flags": list(out.flags),
            "maps": [map_doc(m) for m in out.maps],
        }.items() if v})
    doc["outputs"] = outputs
    return doc


def load_command(path: Path, config: Optional[FFmpegConfig] = None) -> FFmpegCommand:
    """Load a command from a YAML file.

    Raises:
        OSError: If the file can't be read.
        ValueError: If the file is not a valid command document.
    """
    with open(path, "r", encoding="utf-8") as fh:
        try:
            data = yaml.safe_load(fh)
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
    return command_from_dict(data, config)


def dump_command(command: FFmpegCommand, path: Path) -> None:
    """Write a command with path endpoints to a YAML file."""
    with open(path, "w", encoding="utf-8") as fh:
        yaml.safe_dump(command_to_dict(command), fh, sort_keys=False)


# ------------------------------------------------------------------ #
#   Directory scanning                                               #
# ------------------------------------------------------------------ #


def load_commands(directory: Path, config: Optional[FFmpegConfig] = None) -> dict[str, FFmpegCommand]:
    """Load every ``*.yaml``/``*.yml`` command in ``directory``, keyed by file stem.

    Invalid documents are logged and skipped.
    """
    commands: dict[str, FFmpegCommand] = {}
    if not directory.is_dir():
        return commands

    for path in sorted([*directory.glob("*.yaml"), *directory.glob("*.yml")]):
        try:
            commands[path.stem] = load_command(path, config)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to load command %s: %s", path, exc)
    logger.debug("Loaded %d commands from %s", len(commands), directory)
    return commands
