"""Evaluation core for alignment-based sequence models."""
