"""Luigi task definitions for the exmpipe stages.

This module contains the shell task base, command descriptors, stage chaining,
scatter-gather progress markers, and the alignment, metrics, and GATK stages.
"""
