"""SomFilter: probabilistic artifact filtering for somatic variant calls.

Public API is intentionally small; most users should use the CLI:

    somfilter filter --vcf ... --outdir ...

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
