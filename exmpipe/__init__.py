"""Batch-scheduler orchestration of an exome analysis pipeline.

exmpipe runs read alignment, duplicate marking, and joint variant calling as
Luigi tasks that wrap external tools, chains finished stages to downstream
stages, and coordinates scatter-gather arrays through progress markers.
"""

from importlib.metadata import version

__version__ = version(__package__) if __package__ else None

__all__ = ["__version__"]
