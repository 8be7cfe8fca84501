"""Live drift tracking and focus stacking for handheld microscope cameras.

Frame buffers are plain numpy arrays:
- frames are (H, W, 4) uint8 RGBA
- grayscale buffers are (H, W) uint8
- edge / sharpness maps are (H, W) float32 with a zeroed 1-pixel border

Modules are imported by their full path, e.g.
`from scopestack.alignment import align_frames`.
"""
