"""Stream preview rendering.

Renders every stream of a media file as one horizontal strip: video as
a row of tiles sampled over a time range, audio as a waveform per
channel, images scaled to fit and subtitles burned onto a grey box. All
strips are stacked by a single ffmpeg filter graph into one PNG, which
is then cut back into one image per stream.
"""

import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from PIL import Image

from ..config import FFmpegConfig, get_config
from ..video.analyzer import ProbeResult, ProbeStream, VideoAnalyzer
from .command_builder import (
    FFmpegCommand,
    Filter,
    FilterGraph,
    Input,
    Map,
    Output,
    duration_to_position,
)
from .scope import CancelScope

logger = logging.getLogger("ffcat")

IMAGE_CODECS = ("png", "jpeg")

# Tile size used when no stream reports a size
DEFAULT_TILE_WIDTH = 320
DEFAULT_TILE_HEIGHT = 200
AUDIO_CHANNEL_HEIGHT = 100


@dataclass
class Resolution:
    """Target width in pixels; sizes are rounded down to the alignments
    (e.g. the terminal's cell size)."""
    width: int
    height: int
    width_align: int = 1
    height_align: int = 1


@dataclass
class Range:
    """Time range to sample, in seconds. A negative offset counts from
    the end of the file."""
    offset: float = 0.0
    duration: float = 10.0
    delta: float = 1.0


def _colorspace(outputs: Optional[list[str]] = None) -> Filter:
    # vstack takes the colorspace of its first input, make them all agree
    return Filter(
        "colorspace",
        {"iall": "bt709", "all": "bt709", "trc": "srgb"},
        outputs=outputs or [],
    )


def _even_pad() -> Filter:
    # colorspace wants even sizes
    return Filter("pad", {"width": "iw+mod(iw,2)", "height": "ih+mod(ih,2)"})


@dataclass
class PreviewImage:
    """Preview of one stream."""
    stream: ProbeStream
    image: Image.Image

    def __str__(self) -> str:
        s = self.stream
        text = f"{s.index}: {s.codec_name} {s.codec_type} {s.bit_rate}b/s "
        if s.codec_type == "audio":
            text += f"{s.sample_rate} Hz {s.channels} ch {s.bits_per_sample} bit"
        elif s.codec_type == "video":
            text += f"{s.display_width()}x{s.display_height()} ({s.rotation()})"
        elif s.codec_type == "subtitle":
            text += s.tags.language
        return text

    def save(self, path: str | Path) -> None:
        self.image.save(path)


@dataclass
class PreviewOutput:
    """All stream previews of one file."""
    probe: ProbeResult
    images: list[PreviewImage] = field(default_factory=list)

    def __str__(self) -> str:
        return f"{self.probe.format_name}: {duration_to_position(self.probe.duration)}"


class PreviewGenerator:
    """Builds stream previews with a single ffmpeg run."""

    def __init__(
        self,
        config: Optional[FFmpegConfig] = None,
        analyzer: Optional[VideoAnalyzer] = None,
    ):
        """Initialize preview generator.

        Args:
            config: Binary configuration. Defaults to :func:`get_config`.
            analyzer: Analyzer used to probe inputs. Created if not provided.
        """
        self.config = config or get_config()
        self.analyzer = analyzer or VideoAnalyzer(self.config)

    def render(
        self,
        path: str | Path,
        resolution: Resolution,
        time_range: Range,
        scope: Optional[CancelScope] = None,
    ) -> PreviewOutput:
        """Render previews for every stream in ``path``.

        Raises:
            FileNotFoundError: If ``path`` doesn't exist.
            ValueError: If the range is empty or no stream can be previewed.
            ProcessError: If ffprobe or ffmpeg fails.
        """
        if time_range.delta <= 0 or time_range.duration <= 0:
            raise ValueError(f"Invalid range: {time_range}")

        probe = self.analyzer.analyze(path, scope=scope)
        command, layout = self.build_command(path, probe, resolution, time_range)
        command.scope = scope

        buffer = io.BytesIO()
        command.outputs[0].file = buffer
        command.run()

        sheet = Image.open(io.BytesIO(buffer.getvalue()))
        sheet.load()

        images = []
        width, heights = layout
        dy = 0
        for stream, height in zip(probe.streams, heights):
            if height == 0:
                continue
            crop = sheet.crop((0, dy, width, dy + height)).convert("RGBA")
            images.append(PreviewImage(stream=stream, image=crop))
            dy += height

        logger.debug("Rendered %d stream previews for %s", len(images), path)
        return PreviewOutput(probe=probe, images=images)

    def build_command(
        self,
        path: str | Path,
        probe: ProbeResult,
        resolution: Resolution,
        time_range: Range,
    ) -> tuple[FFmpegCommand, tuple[int, list[int]]]:
        """Build the preview command for an already probed file.

        Returns the command (its output file still to be set) and the
        layout of the resulting sheet: its width and the strip height of
        each probed stream, 0 for streams that produce no strip.
        """
        offset = time_range.offset
        if offset < 0:
            offset = probe.duration + offset
        frames = max(1, int(time_range.duration / time_range.delta))

        inp = Input(
            file=path,
            flags=["-ss", f"{offset:f}", "-t", f"{time_range.duration:f}"],
        )

        tile_width = DEFAULT_TILE_WIDTH
        tile_height = DEFAULT_TILE_HEIGHT
        audio_channel_height = AUDIO_CHANNEL_HEIGHT

        max_width = max((s.display_width() for s in probe.streams), default=0)
        max_height = max((s.display_height() for s in probe.streams), default=0)
        if max_width and max_height:
            tile_width = resolution.width // frames
            tile_height = int(max_height / (max_width / tile_width)) if tile_width else 0

        # Align sizes to the cell size
        tile_width -= tile_width % resolution.width_align
        tile_height -= tile_height % resolution.height_align
        audio_channel_height -= audio_channel_height % resolution.height_align
        sheet_width = tile_width * frames

        subtitle_count = sum(1 for s in probe.streams if s.codec_type == "subtitle")
        subtitle_video_index = None
        if subtitle_count:
            first_video = probe.find_first_stream("video")
            if first_video is not None:
                subtitle_video_index = first_video.index

        video_select = (
            f"if(between(t,0,{time_range.duration:f}), "
            f"if(isnan(prev_selected_t), 1, gte(t-prev_selected_t,{time_range.delta:f})))"
        )
        audio_select = f"between(t,0,{time_range.duration:f})"

        graph = FilterGraph()
        outs: list[str] = []
        heights: list[int] = []
        subtitle_out_count = 0

        for stream in probe.streams:
            out = f"out{len(outs)}"
            source = f"0:{stream.index}"

            if stream.codec_type == "audio":
                height = audio_channel_height * stream.channels
                graph.add_chain(
                    Filter("aselect", {"expr": audio_select}, inputs=[source]),
                    Filter("showwavespic", {
                        "size": f"{sheet_width}x{height}",
                        "split_channels": "1",
                        "colors": "white",
                    }),
                    _even_pad(),
                    _colorspace([out]),
                )

            elif stream.codec_type == "video" and stream.codec_name in IMAGE_CODECS:
                width, height = self._fit_image(stream, sheet_width)
                graph.add_chain(
                    Filter("scale", {"width": str(width), "height": str(height)}, inputs=[source]),
                    _colorspace([out]),
                )

            elif stream.codec_type == "video":
                height = tile_height
                split_outs = [out]
                if stream.index == subtitle_video_index:
                    split_outs += [f"subtitle_video{i}" for i in range(subtitle_count)]
                graph.add_chain(
                    Filter("select", {"expr": video_select}, inputs=[source]),
                    Filter("scale", {"width": str(tile_width), "height": str(tile_height)}),
                    Filter("tile", {"layout": f"{frames}x1", "nb_frames": str(frames)}),
                    _even_pad(),
                    _colorspace(),
                    Filter("split", {"outputs": str(len(split_outs))}, outputs=split_outs),
                )

            elif stream.codec_type == "subtitle" and subtitle_video_index is not None:
                height = tile_height
                boxed = f"subtitle_main{subtitle_out_count}"
                # TODO: text subtitles need the subtitles filter instead of overlay
                graph.add_chain(
                    Filter(
                        "drawbox",
                        {"color": "#707070", "thickness": "fill"},
                        inputs=[f"subtitle_video{subtitle_out_count}"],
                        outputs=[boxed],
                    ),
                )
                graph.add_chain(
                    Filter("overlay", inputs=[boxed, source], outputs=[out]),
                )
                subtitle_out_count += 1

            else:
                heights.append(0)
                continue

            outs.append(out)
            heights.append(height)

        if not outs:
            raise ValueError(f"No previewable streams in {path}")

        # vstack requires more than one input
        if len(outs) > 1:
            graph.add_chain(
                Filter("vstack", {"inputs": str(len(outs))}, inputs=outs, outputs=["out"]),
            )
        else:
            graph.add_chain(Filter("copy", inputs=outs, outputs=["out"]))

        command = FFmpegCommand(
            inputs=[inp],
            filter_graph=graph,
            outputs=[
                Output(
                    file=None,
                    maps=[Map(specifier="[out]", codec="png")],
                    format="image2",
                    flags=["-frames", "1"],
                ),
            ],
            config=self.config,
        )
        return command, (sheet_width, heights)

    @staticmethod
    def _fit_image(stream: ProbeStream, max_width: int) -> tuple[int, int]:
        width = stream.display_width()
        height = stream.display_height()
        if width > max_width:
            height = int(height / (width / max_width))
            height += height % 2
            width = max_width
        return width, height
