"""Tests for YAML command documents."""

import io
import logging
import textwrap

import pytest

from ffcat.config import FFmpegConfig
from ffcat.errors import ResolutionError
from ffcat.executor.command_builder import FFmpegCommand, Input, Map, Output
from ffcat.executor.loader import (
    command_from_dict,
    command_to_dict,
    dump_command,
    load_command,
    load_commands,
)

CONFIG = FFmpegConfig()

TONE_YAML = textwrap.dedent("""\
    flags: ["-y", "-loglevel", "error"]
    inputs:
      - file: sine=frequency=440:duration=1
        format: lavfi
    filter_graph:
      - - name: volume
          inputs: ["0:a"]
          options: {volume: 0.5}
          outputs: [quiet]
    outputs:
      - file: out.wav
        format: wav
        metadata: {title: Tone}
        maps:
          - specifier: "[quiet]"
            codec: pcm_s16le
""")


class TestCommandFromDict:
    """Tests for building commands from documents."""

    def test_load_yaml(self, tmp_path):
        """Test a YAML document compiles to the expected arguments."""
        path = tmp_path / "tone.yaml"
        path.write_text(TONE_YAML)
        cmd = load_command(path, CONFIG)
        assert cmd.args() == [
            "-nostdin", "-hide_banner", "-y", "-loglevel", "error",
            "-filter_complex", "[0:a]volume=volume=0.5[quiet]",
            "-f", "lavfi", "-i", "sine=frequency=440:duration=1",
            "-map", "[quiet]", "-codec:0", "pcm_s16le",
            "-f", "wav", "-metadata", "title=Tone",
            "out.wav",
        ]

    def test_map_input_index(self):
        """Test map inputs are resolved by index."""
        cmd = command_from_dict({
            "inputs": [{"file": "a.wav"}, {"file": "b.wav"}],
            "outputs": [{"file": "o.wav", "maps": [{"input": 1, "specifier": "a"}]}],
        }, CONFIG)
        assert cmd.outputs[0].maps[0].input is cmd.inputs[1]

    def test_bad_map_index(self):
        """Test an out of range map index fails."""
        with pytest.raises(ResolutionError):
            command_from_dict({
                "inputs": [{"file": "a.wav"}],
                "outputs": [{"file": "o.wav", "maps": [{"input": 2}]}],
            }, CONFIG)

    def test_missing_file(self):
        """Test inputs and outputs need a file."""
        with pytest.raises(ValueError):
            command_from_dict({"inputs": [{"format": "wav"}]}, CONFIG)

    def test_not_a_mapping(self):
        """Test the document must be a mapping."""
        with pytest.raises(ValueError):
            command_from_dict(["nope"], CONFIG)

    def test_invalid_yaml(self, tmp_path):
        """Test a YAML syntax error becomes ValueError."""
        path = tmp_path / "broken.yaml"
        path.write_text("inputs: [unclosed\n")
        with pytest.raises(ValueError):
            load_command(path, CONFIG)


class TestCommandToDict:
    """Tests for saving commands."""

    def test_dump_and_load(self, tmp_path):
        """Test a saved command loads back to the same arguments."""
        inp = Input("in.wav", options={"ss": "1"})
        cmd = FFmpegCommand(
            flags=["-y"],
            inputs=[inp],
            outputs=[Output("out.mp3", maps=[Map(input=inp, codec="libmp3lame")], metadata={"title": "x"})],
            config=CONFIG,
        )
        path = tmp_path / "saved.yaml"
        dump_command(cmd, path)
        assert load_command(path, CONFIG).args() == cmd.args()

    def test_stream_endpoint_rejected(self):
        """Test streams can't be written to a document."""
        cmd = FFmpegCommand(outputs=[Output(io.BytesIO())], config=CONFIG)
        with pytest.raises(ValueError):
            command_to_dict(cmd)

    def test_foreign_map_input(self):
        """Test a map to an input outside the command fails."""
        cmd = FFmpegCommand(outputs=[Output("o", maps=[Map(input=Input("x"))])], config=CONFIG)
        with pytest.raises(ResolutionError):
            command_to_dict(cmd)


class TestLoadCommands:
    """Tests for loading a directory of documents."""

    def test_loads_valid_and_skips_invalid(self, tmp_path, caplog):
        """Test invalid documents are logged and skipped."""
        (tmp_path / "tone.yaml").write_text(TONE_YAML)
        (tmp_path / "other.yml").write_text("outputs: [{file: o.wav}]\n")
        (tmp_path / "bad.yaml").write_text("inputs: [{format: wav}]\n")
        (tmp_path / "notes.txt").write_text("ignored")

        with caplog.at_level(logging.WARNING, logger="ffcat"):
            commands = load_commands(tmp_path, CONFIG)

        assert sorted(commands) == ["other", "tone"]
        assert "bad.yaml" in caplog.text

    def test_missing_directory(self, tmp_path):
        """Test a missing directory yields nothing."""
        assert load_commands(tmp_path / "nope", CONFIG) == {}
