"""Tests for stream preview rendering."""

import pytest

from ffcat.config import FFmpegConfig
from ffcat.executor.command_builder import FFmpegCommand, Input, Map, Output
from ffcat.executor.preview import PreviewGenerator, PreviewOutput, Range, Resolution
from ffcat.video.analyzer import ProbeResult, ProbeStream

CONFIG = FFmpegConfig()


def _probe(*streams, duration="12.5") -> ProbeResult:
    return ProbeResult(
        format={"format_name": "matroska,webm", "duration": duration},
        streams=[ProbeStream(index=i, **s) for i, s in enumerate(streams)],
    )


VIDEO = {"codec_type": "video", "codec_name": "h264", "width": 640, "height": 480}
AUDIO = {"codec_type": "audio", "codec_name": "aac", "channels": 2}
SUBTITLE = {"codec_type": "subtitle", "codec_name": "dvd_subtitle"}
DATA = {"codec_type": "data", "codec_name": "bin_data"}


class TestBuildCommand:
    """Tests for the preview filter graph."""

    def test_layout(self):
        """Test strip sizes for video, audio, subtitle and data streams."""
        gen = PreviewGenerator(CONFIG)
        cmd, (width, heights) = gen.build_command(
            "in.mkv", _probe(VIDEO, AUDIO, SUBTITLE, DATA), Resolution(800, 600), Range(0, 4, 1)
        )
        assert width == 800
        assert heights == [150, 200, 150, 0]

        graph = cmd.filter_graph.to_string()
        assert "scale=height=150:width=200" in graph
        assert "tile=layout=4x1:nb_frames=4" in graph
        assert "split=outputs=2[out0][subtitle_video0]" in graph
        assert "showwavespic=colors=white:size=800x200:split_channels=1" in graph
        assert "[subtitle_main0][0:2]overlay=[out2]" in graph
        assert "[out0][out1][out2]vstack=inputs=3[out]" in graph

    def test_output(self):
        """Test the sheet is a single PNG frame."""
        cmd, _ = PreviewGenerator(CONFIG).build_command(
            "in.mkv", _probe(VIDEO), Resolution(800, 600), Range()
        )
        out = cmd.outputs[0]
        assert out.format == "image2"
        assert out.maps[0].specifier == "[out]"
        assert out.maps[0].codec == "png"
        assert out.flags == ["-frames", "1"]
        assert "[out0]copy=[out]" in cmd.filter_graph.to_string()

    def test_negative_offset_from_end(self):
        """Test a negative offset counts back from the duration."""
        cmd, _ = PreviewGenerator(CONFIG).build_command(
            "in.mkv", _probe(VIDEO), Resolution(800, 600), Range(-5, 4, 1)
        )
        assert cmd.inputs[0].flags == ["-ss", "7.500000", "-t", "4.000000"]

    def test_alignment(self):
        """Test sizes are rounded down to the alignment."""
        _, (width, heights) = PreviewGenerator(CONFIG).build_command(
            "in.mkv",
            _probe(VIDEO, AUDIO),
            Resolution(800, 600, width_align=7, height_align=16),
            Range(0, 4, 1),
        )
        assert width == 784
        assert heights == [144, 192]

    def test_image_stream_fits_width(self):
        """Test a large still image is scaled down to the sheet width."""
        image = {"codec_type": "video", "codec_name": "png", "width": 1000, "height": 500}
        cmd, (_, heights) = PreviewGenerator(CONFIG).build_command(
            "cover.png", _probe(image, VIDEO), Resolution(800, 600), Range(0, 4, 1)
        )
        assert heights[0] == 400
        assert "[0:0]scale=height=400:width=800" in cmd.filter_graph.to_string()

    def test_subtitle_without_video_skipped(self):
        """Test subtitles need a video stream to draw on."""
        _, (_, heights) = PreviewGenerator(CONFIG).build_command(
            "in.mkv", _probe(AUDIO, SUBTITLE), Resolution(800, 600), Range(0, 4, 1)
        )
        assert heights == [100 * 2, 0]

    def test_nothing_previewable(self):
        """Test a file with only data streams is rejected."""
        with pytest.raises(ValueError):
            PreviewGenerator(CONFIG).build_command(
                "in.bin", _probe(DATA), Resolution(800, 600), Range()
            )

    def test_invalid_range(self, tmp_path):
        """Test an empty range is rejected before probing."""
        with pytest.raises(ValueError):
            PreviewGenerator(CONFIG).render(tmp_path / "x.mkv", Resolution(800, 600), Range(0, 0, 1))


class TestPreviewOutput:
    """Tests for preview descriptions."""

    def test_str(self):
        """Test the summary shows format and duration."""
        assert str(PreviewOutput(probe=_probe(VIDEO, duration="3725"))) == "matroska: 1:02:05"


class TestRender:
    """Tests rendering a real file."""

    def test_render_video_and_audio(self, ffmpeg_config, tmp_path):
        """Test one image per stream, cropped from the sheet."""
        path = tmp_path / "clip.mkv"
        video = Input("testsrc=duration=2:size=160x120:rate=5", format="lavfi")
        audio = Input("sine=duration=2", format="lavfi")
        FFmpegCommand(
            flags=["-loglevel", "error"],
            inputs=[video, audio],
            outputs=[
                Output(
                    str(path),
                    maps=[Map(input=video, codec="mpeg4"), Map(input=audio, codec="pcm_s16le")],
                    format="matroska",
                )
            ],
            config=ffmpeg_config,
        ).run()

        preview = PreviewGenerator(ffmpeg_config).render(path, Resolution(400, 300), Range(0, 2, 1))

        assert [p.stream.codec_type for p in preview.images] == ["video", "audio"]
        assert preview.images[0].image.size == (400, 150)
        assert preview.images[1].image.size == (400, 100)
        assert str(preview.images[1]).startswith("1: pcm_s16le audio")
