"""Load the persisted sparse 3D model.

Supported formats:
- PCD point clouds (``DATA ascii`` or ``DATA binary``) with x, y, z fields
  and an optional ``label`` field
- ``.npy`` arrays of shape (N, 3)
- ``.xyz`` / ``.txt`` whitespace separated ``x y z`` rows

Any failure raises ModelLoadError, which is fatal to the pipeline.
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np

from ..errors import ModelLoadError
from ..model import PointModel

logger = logging.getLogger(__name__)

# PCD (TYPE, SIZE) -> numpy dtype
_PCD_TYPES = {
    ("F", 4): np.float32,
    ("F", 8): np.float64,
    ("I", 1): np.int8,
    ("I", 2): np.int16,
    ("I", 4): np.int32,
    ("I", 8): np.int64,
    ("U", 1): np.uint8,
    ("U", 2): np.uint16,
    ("U", 4): np.uint32,
    ("U", 8): np.uint64,
}


def _parse_pcd_header(raw: bytes, path: Path) -> tuple[dict[str, list[str]], int]:
    """Parse the PCD header.

    Returns:
        Tuple of (header entries keyed by upper-case name, byte offset of data)
    """
    header: dict[str, list[str]] = {}
    offset = 0
    while True:
        end = raw.find(b"\n", offset)
        if end < 0:
            raise ModelLoadError(f"PCD header in {path} has no DATA line")
        line = raw[offset:end].decode("ascii", errors="replace").strip()
        offset = end + 1
        if not line or line.startswith("#"):
            continue
        key, *values = line.split()
        header[key.upper()] = values
        if key.upper() == "DATA":
            return header, offset


def _load_pcd(path: Path) -> PointModel:
    raw = path.read_bytes()
    header, offset = _parse_pcd_header(raw, path)

    names = header.get("FIELDS")
    if not names or not {"x", "y", "z"} <= set(names):
        raise ModelLoadError(f"PCD file {path} lacks x/y/z fields")

    n_fields = len(names)
    sizes = [int(s) for s in header.get("SIZE", ["4"] * n_fields)]
    types = header.get("TYPE", ["F"] * n_fields)
    counts = [int(c) for c in header.get("COUNT", ["1"] * n_fields)]
    if not (len(sizes) == len(types) == len(counts) == n_fields):
        raise ModelLoadError(f"Inconsistent FIELDS/SIZE/TYPE/COUNT in {path}")

    if "POINTS" in header:
        n_points = int(header["POINTS"][0])
    else:
        n_points = int(header["WIDTH"][0]) * int(header.get("HEIGHT", ["1"])[0])

    data_kind = header["DATA"][0].lower() if header["DATA"] else ""

    if data_kind == "ascii":
        text = raw[offset:].decode("ascii", errors="replace")
        rows = [line.split() for line in text.splitlines() if line.strip()]
        if len(rows) != n_points:
            raise ModelLoadError(
                f"PCD file {path} declares {n_points} points but holds {len(rows)}"
            )
        columns: dict[str, np.ndarray] = {}
        values = np.array(rows, dtype=np.float64).reshape(n_points, -1)
        col = 0
        for name, count in zip(names, counts):
            columns[name] = values[:, col]
            col += count
    elif data_kind == "binary":
        dtype_fields = []
        for name, size, kind, count in zip(names, sizes, types, counts):
            np_type = _PCD_TYPES.get((kind.upper(), size))
            if np_type is None:
                raise ModelLoadError(f"Unsupported PCD field type {kind}{size} in {path}")
            # Padding fields are commonly named "_"
            field_name = name if name != "_" else f"_pad{len(dtype_fields)}"
            if count > 1:
                dtype_fields.append((field_name, np_type, (count,)))
            else:
                dtype_fields.append((field_name, np_type))
        record = np.dtype(dtype_fields)
        expected = record.itemsize * n_points
        if len(raw) - offset < expected:
            raise ModelLoadError(f"PCD file {path} is truncated")
        data = np.frombuffer(raw, dtype=record, count=n_points, offset=offset)
        columns = {name: data[name] for name in ("x", "y", "z", "label") if name in names}
    else:
        raise ModelLoadError(f"Unsupported PCD DATA encoding '{data_kind}' in {path}")

    points = np.column_stack([columns["x"], columns["y"], columns["z"]]).astype(np.float64)
    labels = columns.get("label")

    # Organized clouds mark missing points with NaN
    valid = np.isfinite(points).all(axis=1)
    if not valid.all():
        logger.info("Dropping %d non-finite points from %s", int((~valid).sum()), path)
        points = points[valid]
        labels = labels[valid] if labels is not None else None

    return PointModel(points=points, labels=labels)


def load_model(path: str | Path) -> PointModel:
    """Load a sparse 3D model from disk.

    Args:
        path: Path to a .pcd, .npy, .xyz or .txt file

    Returns:
        PointModel with the file's points in order

    Raises:
        ModelLoadError: If the file is missing, unreadable, malformed or empty
    """
    path = Path(path)
    if not path.exists():
        raise ModelLoadError(f"Model file not found: {path}")

    suffix = path.suffix.lower()
    try:
        if suffix == ".pcd":
            model = _load_pcd(path)
        elif suffix == ".npy":
            array = np.load(path, allow_pickle=False)
            if array.ndim != 2 or array.shape[1] != 3:
                raise ModelLoadError(
                    f"Expected an (N, 3) array in {path}, got {array.shape}"
                )
            model = PointModel(points=array)
        elif suffix in (".xyz", ".txt"):
            rows = np.loadtxt(path, dtype=np.float64, ndmin=2)
            if rows.shape[1] < 3:
                raise ModelLoadError(f"Expected x y z columns in {path}")
            model = PointModel(points=rows[:, :3])
        else:
            raise ModelLoadError(f"Unsupported model format '{suffix}': {path}")
    except ModelLoadError:
        raise
    except (OSError, ValueError, KeyError, IndexError) as e:
        raise ModelLoadError(f"Failed to load model from {path}: {e}") from e

    if len(model) == 0:
        raise ModelLoadError(f"Model file {path} contains no points")

    logger.info("Loaded model with %d points from %s", len(model), path)
    return model
