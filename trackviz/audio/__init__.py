"""Audio rendering, encoding and analysis.

Everything here works on in-memory buffers:
- render: pattern -> planar float32 PCM
- wav/encode: PCM -> WAV bytes, MP3 bytes (ffmpeg/libmp3lame as the default codec)
- fft/analyzer/transport: live frames -> band, level and note metrics
"""
