"""In-process MPEG-TS -> MP4 transmux via PyAV (stream copy, no re-encode)."""

from __future__ import annotations

import asyncio
import io

import av
import structlog
from av.error import FFmpegError

from vidrelay.domain.exceptions import DecodeFailure

log = structlog.get_logger(__name__)

# Codecs the mp4 muxer accepts as-is.
_MP4_AUDIO_CODECS = frozenset({"aac", "mp3", "alac", "ac3", "eac3", "opus"})


def transmux_ts_to_mp4(data: bytes) -> bytes:
    """Remux one concatenated transport stream into an MP4 byte string.

    Audio streams in codecs the mp4 muxer cannot hold are dropped rather
    than transcoded.

    Raises:
        DecodeFailure: the input is not a demuxable transport stream.
    """
    output_buffer = io.BytesIO()
    try:
        with av.open(io.BytesIO(data), format="mpegts") as source:
            video = source.streams.video[0] if source.streams.video else None
            audio = next(
                (
                    s
                    for s in source.streams.audio
                    if (s.codec_context.name or "").lower() in _MP4_AUDIO_CODECS
                ),
                None,
            )
            inputs = [s for s in (video, audio) if s is not None]
            if not inputs:
                raise DecodeFailure("transport stream has no muxable streams")

            with av.open(
                output_buffer,
                mode="w",
                format="mp4",
                options={"movflags": "faststart"},
            ) as target:
                mapping = {s: target.add_stream_from_template(template=s) for s in inputs}
                for packet in source.demux(inputs):
                    if packet.dts is None:
                        continue
                    packet.stream = mapping[packet.stream]
                    target.mux(packet)
    except FFmpegError as e:
        raise DecodeFailure(f"transmux failed: {e}") from e
    return output_buffer.getvalue()


class PyAvTransmuxer:
    """TransmuxerPort running PyAV in a worker thread."""

    async def transmux(self, segments: list[bytes]) -> bytes:
        joined = b"".join(segments)
        result = await asyncio.to_thread(transmux_ts_to_mp4, joined)
        log.debug("transmux_done", input_bytes=len(joined), output_bytes=len(result))
        return result
