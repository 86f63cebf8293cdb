"""
Colorspace math: RGB <-> HSV and RGB -> Lab.

Scalar functions operate on one pixel triple; the *_array variants apply the
same formulas to (..., 3) arrays and produce numerically identical results.
"""

import math

import numpy as np

from app.services.raster import round_half_up

# sRGB (D65) linear RGB -> XYZ
_RGB_TO_XYZ = np.array([
    [0.4124564, 0.3575761, 0.1804375],
    [0.2126729, 0.7151522, 0.0721750],
    [0.0193339, 0.1191920, 0.9503041],
])

# D65 reference white
_WHITE_POINT = (0.95047, 1.00000, 1.08883)

_SRGB_LINEAR_LIMIT = 0.04045
_LAB_EPSILON = 0.008856
_LAB_KAPPA = 7.787


def rgb_to_hsv(r: int, g: int, b: int) -> tuple[int, int, int]:
    """
    Convert an RGB triple to HSV.

    Returns:
        (h, s, v) with h in [0, 360) degrees and s, v in [0, 255]
    """
    rn, gn, bn = r / 255, g / 255, b / 255
    max_c = max(rn, gn, bn)
    min_c = min(rn, gn, bn)
    diff = max_c - min_c

    h = 0.0
    if diff != 0:
        if max_c == rn:
            h = math.fmod((gn - bn) / diff, 6)
        elif max_c == gn:
            h = (bn - rn) / diff + 2
        else:
            h = (rn - gn) / diff + 4
    hue = round_half_up(h * 60)
    if hue < 0:
        hue += 360

    s = 0.0 if max_c == 0 else diff / max_c
    return hue, round_half_up(s * 255), round_half_up(max_c * 255)


def hsv_to_rgb(h: float, s: float, v: float) -> tuple[int, int, int]:
    """Inverse of rgb_to_hsv (s and v in [0, 255])."""
    sn, vn = s / 255, v / 255
    c = vn * sn
    hp = (h % 360) / 60
    x = c * (1 - abs(math.fmod(hp, 2) - 1))

    if hp < 1:
        rp, gp, bp = c, x, 0.0
    elif hp < 2:
        rp, gp, bp = x, c, 0.0
    elif hp < 3:
        rp, gp, bp = 0.0, c, x
    elif hp < 4:
        rp, gp, bp = 0.0, x, c
    elif hp < 5:
        rp, gp, bp = x, 0.0, c
    else:
        rp, gp, bp = c, 0.0, x

    m = vn - c
    return (
        round_half_up((rp + m) * 255),
        round_half_up((gp + m) * 255),
        round_half_up((bp + m) * 255),
    )


def _linearize(c: float) -> float:
    if c > _SRGB_LINEAR_LIMIT:
        return ((c + 0.055) / 1.055) ** 2.4
    return c / 12.92


def _lab_f(t: float) -> float:
    if t > _LAB_EPSILON:
        return t ** (1 / 3)
    return _LAB_KAPPA * t + 16 / 116


def rgb_to_lab(r: int, g: int, b: int) -> tuple[float, float, float]:
    """
    Convert an RGB triple to CIE Lab rescaled for raster storage.

    L in [0, 100] maps to [0, 255]; a and b map (x + 128) * 255 / 256.
    All outputs are clamped to [0, 255].
    """
    rl, gl, bl = _linearize(r / 255), _linearize(g / 255), _linearize(b / 255)

    x = (rl * _RGB_TO_XYZ[0, 0] + gl * _RGB_TO_XYZ[0, 1] + bl * _RGB_TO_XYZ[0, 2]) / _WHITE_POINT[0]
    y = (rl * _RGB_TO_XYZ[1, 0] + gl * _RGB_TO_XYZ[1, 1] + bl * _RGB_TO_XYZ[1, 2]) / _WHITE_POINT[1]
    z = (rl * _RGB_TO_XYZ[2, 0] + gl * _RGB_TO_XYZ[2, 1] + bl * _RGB_TO_XYZ[2, 2]) / _WHITE_POINT[2]

    fx, fy, fz = _lab_f(x), _lab_f(y), _lab_f(z)
    lightness = 116 * fy - 16
    a = 500 * (fx - fy)
    b_lab = 200 * (fy - fz)

    return (
        min(255.0, max(0.0, lightness / 100 * 255)),
        min(255.0, max(0.0, (a + 128) * 255 / 256)),
        min(255.0, max(0.0, (b_lab + 128) * 255 / 256)),
    )


def rgb_to_hsv_array(rgb: np.ndarray) -> np.ndarray:
    """
    Vectorized rgb_to_hsv.

    Args:
        rgb: (..., 3) array of channel values in [0, 255]

    Returns:
        (..., 3) float array of (h, s, v), same ranges as rgb_to_hsv
    """
    norm = rgb.astype(np.float64) / 255
    rn, gn, bn = norm[..., 0], norm[..., 1], norm[..., 2]
    max_c = norm.max(axis=-1)
    min_c = norm.min(axis=-1)
    diff = max_c - min_c

    safe_diff = np.where(diff == 0, 1.0, diff)
    hue = np.where(
        max_c == rn,
        np.fmod((gn - bn) / safe_diff, 6),
        np.where(max_c == gn, (bn - rn) / safe_diff + 2, (rn - gn) / safe_diff + 4),
    )
    hue = np.where(diff == 0, 0.0, hue)
    hue = np.floor(hue * 60 + 0.5)
    hue = np.where(hue < 0, hue + 360, hue)

    sat = np.where(max_c == 0, 0.0, diff / np.where(max_c == 0, 1.0, max_c))
    return np.stack([
        hue,
        np.floor(sat * 255 + 0.5),
        np.floor(max_c * 255 + 0.5),
    ], axis=-1)


def rgb_to_lab_array(rgb: np.ndarray) -> np.ndarray:
    """
    Vectorized rgb_to_lab.

    Returns:
        (..., 3) float array of rescaled (L, a, b) in [0, 255]
    """
    norm = rgb.astype(np.float64) / 255
    linear = np.where(
        norm > _SRGB_LINEAR_LIMIT,
        ((norm + 0.055) / 1.055) ** 2.4,
        norm / 12.92,
    )
    xyz = linear @ _RGB_TO_XYZ.T / np.array(_WHITE_POINT)
    f = np.where(xyz > _LAB_EPSILON, np.cbrt(xyz), _LAB_KAPPA * xyz + 16 / 116)
    fx, fy, fz = f[..., 0], f[..., 1], f[..., 2]

    lab = np.stack([
        (116 * fy - 16) / 100 * 255,
        (500 * (fx - fy) + 128) * 255 / 256,
        (200 * (fy - fz) + 128) * 255 / 256,
    ], axis=-1)
    return np.clip(lab, 0, 255)
