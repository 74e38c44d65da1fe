"""kubesum command-line interface.

Exposes:
    cli -- Click group entry point (registered as ``kubesum`` script).
"""

from kubesum.cli.main import cli

__all__ = ["cli"]
