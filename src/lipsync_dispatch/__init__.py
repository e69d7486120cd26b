"""Dispatch lipsync generation jobs to single-job ComfyUI workers."""
