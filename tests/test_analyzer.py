"""Tests for ffprobe result decoding and probing."""

import io
import json

import pytest

from ffcat.config import FFmpegConfig
from ffcat.errors import DecodeError, ExitError
from ffcat.executor.command_builder import FFmpegCommand, Input, Map, Output
from ffcat.video.analyzer import FFprobeCommand, ProbeResult, VideoAnalyzer

PROBE_JSON = {
    "streams": [
        {
            "index": 0,
            "codec_name": "h264",
            "codec_type": "video",
            "width": 1920,
            "height": 1080,
            "r_frame_rate": "30/1",
            "tags": {"language": "und", "handler_name": "VideoHandler"},
            "side_data_list": [
                {"side_data_type": "Display Matrix", "displaymatrix": "...", "rotation": -90},
            ],
        },
        {
            "index": 1,
            "codec_name": "aac",
            "codec_type": "audio",
            "sample_rate": "48000",
            "channels": 2,
            "bit_rate": "128000",
        },
    ],
    "format": {
        "filename": "clip.mp4",
        "format_name": "mov,mp4,m4a,3gp,3g2,mj2",
        "duration": "12.500000",
        "probe_score": 100,
        "tags": {"title": "Clip", "encoder": "Lavf60"},
    },
}


class TestProbeResult:
    """Tests for ProbeResult decoding."""

    def test_from_json(self):
        """Test a typical document decodes into typed fields."""
        result = ProbeResult.from_json(json.dumps(PROBE_JSON))
        assert len(result.streams) == 2
        assert result.format_name == "mov"
        assert result.duration == pytest.approx(12.5)
        assert result.format.tags.title == "Clip"
        assert result.first_video_codec() == "h264"
        assert result.first_audio_codec() == "aac"
        assert result.streams[1].channels == 2
        assert result.raw["format"]["probe_score"] == 100
        assert str(result) == "mov:h264:aac"

    def test_from_bytes(self):
        """Test bytes input is accepted."""
        result = ProbeResult.from_json(json.dumps(PROBE_JSON).encode())
        assert result.format.filename == "clip.mp4"

    def test_rotation_swaps_display_size(self):
        """Test a 90 degree rotation swaps width and height."""
        video = ProbeResult.from_json(json.dumps(PROBE_JSON)).streams[0]
        assert video.rotation() == -90
        assert video.display_width() == 1080
        assert video.display_height() == 1920

    def test_no_rotation(self):
        """Test streams without side data are unrotated."""
        audio = ProbeResult.from_json(json.dumps(PROBE_JSON)).streams[1]
        assert audio.rotation() == 0

    def test_missing_stream_type(self):
        """Test lookups for absent stream types."""
        result = ProbeResult.from_json('{"streams": [], "format": {}}')
        assert result.find_first_stream("video") is None
        assert result.first_video_codec() == ""
        assert result.duration == 0.0

    def test_invalid_json(self):
        """Test undecodable output raises DecodeError keeping the text."""
        with pytest.raises(DecodeError) as exc_info:
            ProbeResult.from_json("not json")
        assert exc_info.value.raw == "not json"

    def test_not_an_object(self):
        """Test a JSON array is rejected."""
        with pytest.raises(DecodeError):
            ProbeResult.from_json("[]")


class TestFFprobeCommand:
    """Tests for FFprobeCommand arguments."""

    def test_path_args(self):
        """Test a path input is passed as is."""
        probe = FFprobeCommand(Input("clip.mp4", format="mp4"), config=FFmpegConfig())
        assert probe.args() == [
            "-hide_banner", "-print_format", "json", "-show_format", "-show_streams",
            "-f", "mp4", "clip.mp4",
        ]

    def test_stream_args(self):
        """Test a stream input is read from stdin."""
        probe = FFprobeCommand(
            Input(io.BytesIO()), flags=["-v", "quiet"], config=FFmpegConfig()
        )
        assert probe.args()[-3:] == ["-v", "quiet", "pipe:0"]

    def test_failed_run_wins_over_decode(self, leak_check):
        """Test a failing binary raises ExitError, not DecodeError."""
        probe = FFprobeCommand(Input("x"), config=FFmpegConfig(ffprobe_path="false"))
        with pytest.raises(ExitError):
            probe.run()

    def test_bad_output_is_decode_error(self, leak_check):
        """Test a clean exit with garbage output raises DecodeError."""
        probe = FFprobeCommand(Input("x"), config=FFmpegConfig(ffprobe_path="echo"))
        with pytest.raises(DecodeError) as exc_info:
            probe.run()
        assert "-show_format" in exc_info.value.raw


class TestVideoAnalyzer:
    """Tests for VideoAnalyzer."""

    def test_missing_file(self, tmp_path):
        """Test a missing path raises FileNotFoundError."""
        analyzer = VideoAnalyzer(FFmpegConfig())
        with pytest.raises(FileNotFoundError):
            analyzer.analyze(tmp_path / "missing.mp4")

    def test_probe_stream(self, ffmpeg_config, leak_check):
        """Test probing an in-memory stream."""
        wav = io.BytesIO()
        sine = Input("sine=duration=1", format="lavfi")
        FFmpegCommand(
            flags=["-loglevel", "error"],
            inputs=[sine],
            outputs=[Output(wav, maps=[Map(input=sine, codec="pcm_s16le")], format="wav")],
            config=ffmpeg_config,
        ).run()

        result = VideoAnalyzer(ffmpeg_config).analyze(io.BytesIO(wav.getvalue()))
        assert result.format_name == "wav"
        assert result.streams[0].codec_type == "audio"
        assert result.streams[0].sample_rate == "44100"
