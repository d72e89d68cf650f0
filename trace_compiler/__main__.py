"""
TraceCompiler CLI

Usage:
    python -m trace_compiler --help
    python -m trace_compiler trace --model lenet
    python -m trace_compiler test

Copyright 2025 AbstractPhil
Apache License 2.0
"""

import sys

from trace_compiler.cli import main


if __name__ == '__main__':
    sys.exit(main())
