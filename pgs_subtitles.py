"""
PGS (Blu-ray .sup) subtitle decoding.

Renders every display set of a Presentation Graphic Stream into a grayscale
image (dark text on white) ready for OCR.
"""

import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from PIL import Image

PGS_MAGIC = b"PG"
PGS_CLOCK = 90000

SEGMENT_PDS = 0x14  # palette definition
SEGMENT_ODS = 0x15  # object definition
SEGMENT_PCS = 0x16  # presentation composition
SEGMENT_WDS = 0x17  # window definition
SEGMENT_END = 0x80

EPOCH_START = 0x80
ODS_FIRST_IN_SEQUENCE = 0x80


class PgsError(ValueError):
    """Malformed PGS stream."""


@dataclass
class Segment:
    kind: int
    pts: int
    payload: bytes


@dataclass
class CompositionObject:
    object_id: int
    x: int
    y: int
    crop: Optional[Tuple[int, int, int, int]] = None


@dataclass
class Composition:
    width: int
    height: int
    number: int
    state: int
    palette_id: int
    objects: List[CompositionObject] = field(default_factory=list)


@dataclass
class ObjectData:
    width: int
    height: int
    data: bytearray


@dataclass
class SubtitleImage:
    """One rendered subtitle, with its presentation time in seconds."""
    timestamp: float
    image: Image.Image


def iter_segments(data: bytes) -> Iterator[Segment]:
    offset = 0
    while offset < len(data):
        if len(data) - offset < 13:
            raise PgsError(f"Truncated segment header at offset {offset}")
        magic, pts, _dts, kind, size = struct.unpack_from(">2sIIBH", data, offset)
        if magic != PGS_MAGIC:
            raise PgsError(f"Bad segment magic at offset {offset}")
        offset += 13
        payload = data[offset:offset + size]
        if len(payload) != size:
            raise PgsError(f"Truncated segment payload at offset {offset}")
        offset += size
        yield Segment(kind=kind, pts=pts, payload=payload)


def parse_composition(payload: bytes) -> Composition:
    width, height, _rate, number, state, _update, palette_id, count = struct.unpack_from(">HHBHBBBB", payload, 0)
    composition = Composition(width=width, height=height, number=number, state=state, palette_id=palette_id)

    offset = 11
    for _ in range(count):
        object_id, _window, cropped, x, y = struct.unpack_from(">HBBHH", payload, offset)
        offset += 8
        crop = None
        if cropped & 0x40:
            crop = struct.unpack_from(">HHHH", payload, offset)
            offset += 8
        composition.objects.append(CompositionObject(object_id=object_id, x=x, y=y, crop=crop))

    return composition


def parse_palette(payload: bytes) -> Tuple[int, Dict[int, Tuple[int, int]]]:
    """
    Parse a palette definition.

    Returns:
        (palette id, {entry: (luma, alpha)})
    """
    if len(payload) < 2:
        raise PgsError("Palette segment too short")
    palette_id = payload[0]
    entries = {}
    for offset in range(2, len(payload) - 4, 5):
        entry, luma, _cr, _cb, alpha = payload[offset:offset + 5]
        entries[entry] = (luma, alpha)
    return palette_id, entries


def decode_rle(data: bytes, width: int, height: int) -> bytearray:
    """Expand PGS run-length encoded object data into palette indexes."""
    pixels = bytearray()
    i = 0
    try:
        while i < len(data):
            byte = data[i]
            i += 1
            if byte:
                pixels.append(byte)
                continue

            flags = data[i]
            i += 1
            if flags == 0:
                # end of line
                remainder = len(pixels) % width
                if remainder:
                    pixels.extend(b"\x00" * (width - remainder))
                continue

            count = flags & 0x3F
            if flags & 0x40:
                count = (count << 8) | data[i]
                i += 1
            color = 0
            if flags & 0x80:
                color = data[i]
                i += 1
            pixels.extend(bytes([color]) * count)
    except IndexError as e:
        raise PgsError("Truncated run-length data") from e

    size = width * height
    if len(pixels) < size:
        pixels.extend(b"\x00" * (size - len(pixels)))
    return pixels[:size]


def render_composition(
    composition: Composition,
    palette: Dict[int, Tuple[int, int]],
    objects: Dict[int, ObjectData],
) -> Optional[Image.Image]:
    """
    Draw a composition as an "L" image cropped to its objects.

    Luma is composited over black by alpha, then inverted.
    """
    lut = [255] * 256
    for entry, (luma, alpha) in palette.items():
        lut[entry] = 255 - (luma * alpha) // 255

    canvas = Image.new("L", (max(composition.width, 1), max(composition.height, 1)), 255)
    bbox: Optional[List[int]] = None

    for placed in composition.objects:
        obj = objects.get(placed.object_id)
        if obj is None or not obj.width or not obj.height:
            continue

        indexes = decode_rle(bytes(obj.data), obj.width, obj.height)
        img = Image.frombytes("L", (obj.width, obj.height), bytes(indexes)).point(lut)
        if placed.crop:
            cx, cy, cw, ch = placed.crop
            img = img.crop((cx, cy, cx + cw, cy + ch))

        canvas.paste(img, (placed.x, placed.y))
        box = [placed.x, placed.y, placed.x + img.width, placed.y + img.height]
        if bbox is None:
            bbox = box
        else:
            bbox = [min(bbox[0], box[0]), min(bbox[1], box[1]), max(bbox[2], box[2]), max(bbox[3], box[3])]

    if bbox is None:
        return None
    return canvas.crop(tuple(bbox))


def decode_pgs(data: bytes) -> List[SubtitleImage]:
    """Render every non-empty display set of a PGS stream."""
    images: List[SubtitleImage] = []
    palettes: Dict[int, Dict[int, Tuple[int, int]]] = {}
    objects: Dict[int, ObjectData] = {}
    composition: Optional[Composition] = None
    pts = 0

    for segment in iter_segments(data):
        if segment.kind == SEGMENT_PCS:
            composition = parse_composition(segment.payload)
            pts = segment.pts
            if composition.state & EPOCH_START:
                palettes.clear()
                objects.clear()

        elif segment.kind == SEGMENT_PDS:
            palette_id, entries = parse_palette(segment.payload)
            palettes.setdefault(palette_id, {}).update(entries)

        elif segment.kind == SEGMENT_ODS:
            object_id, _version, sequence = struct.unpack_from(">HBB", segment.payload, 0)
            if sequence & ODS_FIRST_IN_SEQUENCE:
                width, height = struct.unpack_from(">HH", segment.payload, 7)
                objects[object_id] = ObjectData(width=width, height=height, data=bytearray(segment.payload[11:]))
            elif object_id in objects:
                objects[object_id].data.extend(segment.payload[4:])

        elif segment.kind == SEGMENT_END and composition is not None:
            if composition.objects:
                image = render_composition(composition, palettes.get(composition.palette_id, {}), objects)
                if image is not None:
                    images.append(SubtitleImage(timestamp=pts / PGS_CLOCK, image=image))
            composition = None

    return images


def read_pgs_file(path: Path) -> List[SubtitleImage]:
    data = Path(path).read_bytes()
    try:
        return decode_pgs(data)
    except (struct.error, IndexError) as e:
        raise PgsError(f"Truncated segment in {path}: {e}") from e
