# =============================================
# File: telemetry/utils/fourier.py
# Purpose: Turn a WAV clip into a truncated Fourier-series equation (text)
# =============================================
from __future__ import annotations
import io
import math
import sys
import wave
from array import array
from decimal import Decimal
from typing import Dict, List, Sequence

SAMPLES_ANALYZED = 8192
HARMONICS = 64


def _fmt(value: float) -> str:
    """
    6 significant digits, trailing zeros dropped. Plain decimals down to 1e-6
    and up to 1e21, exponent form (`1.5e-7`) outside that range.
    """
    if not math.isfinite(value) or abs(value) < 1e-9:
        return "0"
    sign, digits, exp = Decimal(repr(float(f"{value:.6g}"))).normalize().as_tuple()
    ds = "".join(map(str, digits))
    n = len(ds)
    k = n + exp  # decimal point position
    if n <= k <= 21:
        out = ds + "0" * (k - n)
    elif 0 < k <= 21:
        out = ds[:k] + "." + ds[k:]
    elif -6 < k <= 0:
        out = "0." + "0" * -k + ds
    else:
        e = k - 1
        mantissa = ds[0] + ("." + ds[1:] if n > 1 else "")
        out = f"{mantissa}e{'+' if e > 0 else '-'}{abs(e)}"
    return "-" + out if sign else out


def decode_wav(data: bytes) -> tuple[List[float], float]:
    """
    Decode PCM WAV bytes into mono samples in [-1, 1] and the clip duration (s).
    Raises ValueError on anything that is not readable PCM.
    """
    try:
        with wave.open(io.BytesIO(data), "rb") as w:
            channels = w.getnchannels()
            width = w.getsampwidth()
            rate = w.getframerate()
            n_frames = w.getnframes()
            raw = w.readframes(n_frames)
    except (wave.Error, EOFError) as e:
        raise ValueError(f"Unsupported audio: {e}") from e

    if channels < 1 or rate <= 0:
        raise ValueError("Unsupported audio: invalid header")

    if width == 1:
        ints = [b - 128 for b in raw]
        scale = 128.0
    elif width in (2, 4):
        ints = array("h" if width == 2 else "i")
        ints.frombytes(raw[: len(raw) - len(raw) % width])
        if sys.byteorder == "big":
            ints.byteswap()
        scale = float(2 ** (8 * width - 1))
    elif width == 3:
        ints = [
            int.from_bytes(raw[i:i + 3], "little", signed=True)
            for i in range(0, len(raw) - 2, 3)
        ]
        scale = float(2 ** 23)
    else:
        raise ValueError(f"Unsupported audio: {width * 8}-bit samples")

    frames = len(ints) // channels
    mono = [0.0] * frames
    for c in range(channels):
        for i in range(frames):
            mono[i] += ints[i * channels + c]
    norm = scale * channels
    mono = [v / norm for v in mono]
    return mono, n_frames / rate


def downsample_average(samples: Sequence[float], target: int) -> List[float]:
    """Block-average down to `target` points (no-op when already short enough)."""
    n = len(samples)
    if n <= target:
        return list(samples)
    out = []
    for i in range(target):
        start = (i * n) // target
        end = ((i + 1) * n) // target
        block = samples[start:end]
        out.append(sum(block) / len(block) if block else 0.0)
    return out


def fourier_equation(samples: Sequence[float], duration_s: float, harmonics: int = HARMONICS) -> str:
    n = len(samples)
    k_max = min(harmonics, n // 2)
    if n < 2 or k_max < 1:
        raise ValueError("Audio is too short to derive an equation.")

    two_over_n = 2.0 / n
    a0 = sum(samples) * two_over_n

    # cos/sin of 2*pi*m/n, indexed by (k*i) mod n
    cos_t = [math.cos(2 * math.pi * m / n) for m in range(n)]
    sin_t = [math.sin(2 * math.pi * m / n) for m in range(n)]

    period = _fmt(duration_s)
    lines = ["f(t) =", f"  {_fmt(a0 * 0.5)}"]
    for k in range(1, k_max + 1):
        ak = bk = 0.0
        for i, x in enumerate(samples):
            idx = (k * i) % n
            ak += x * cos_t[idx]
            bk += x * sin_t[idx]
        lines.append(f"  + {_fmt(ak * two_over_n)} cos((2π·{k}·t)/{period})")
        lines.append(f"  + {_fmt(bk * two_over_n)} sin((2π·{k}·t)/{period})")
    return "\n".join(lines)


def wav_to_equation(data: bytes) -> Dict[str, object]:
    mono, duration = decode_wav(data)
    analysis = downsample_average(mono, SAMPLES_ANALYZED)
    return {
        "text": fourier_equation(analysis, duration, HARMONICS),
        "durationSec": duration,
        "samplesAnalyzed": len(analysis),
    }
