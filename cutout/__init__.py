"""Segmentation-mask post-processing: mask strategies, Otsu binarization, smart crop, mask refinement and compositing."""

__version__ = "0.1.0"
