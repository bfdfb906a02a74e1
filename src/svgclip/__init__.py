"""svgclip — SVG template decomposition and timeline rendering.

Split an annotated SVG template into independently positioned clips
(text, shapes, icons, image/video masks) on a multi-track timeline,
then composite the timeline into stills, MP4 video or GIF.
"""
