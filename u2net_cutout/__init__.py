"""
U2-Net-P background removal package.

Exposes reusable primitives for squaring and rasterizing images, running the
segmentation model, and compositing its mask back onto the original.
"""
