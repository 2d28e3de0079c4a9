"""Visual test recorder: capture, normalize, synthesize and replay browser steps."""

__version__ = "0.3.0"
