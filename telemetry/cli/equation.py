# =============================================
# File: telemetry/cli/equation.py
# Purpose: CLI entrypoint to print the Fourier-series equation of a WAV file.
# Usage:
#   python -m telemetry.cli.equation path/to/clip.wav
# =============================================
from __future__ import annotations
import argparse
import sys
from pathlib import Path

from telemetry.utils.fourier import wav_to_equation

def main(argv=None):
    ap = argparse.ArgumentParser(description="Derive a Fourier-series equation from a WAV file.")
    ap.add_argument("wav", help="Path to a PCM .wav file")
    ap.add_argument("--meta", action="store_true", help="Print domain / sample count before the equation")
    args = ap.parse_args(argv)

    path = Path(args.wav)
    if not path.is_file():
        print(f"[ERR] No such file: {path}", file=sys.stderr)
        sys.exit(1)

    try:
        result = wav_to_equation(path.read_bytes())
    except ValueError as e:
        print(f"[ERR] {e}", file=sys.stderr)
        sys.exit(1)

    if args.meta:
        print(f"domain: 0 <= t < {result['durationSec']:.6f} | analyzed samples: {result['samplesAnalyzed']}")
    print(result["text"])

if __name__ == "__main__":
    main()
