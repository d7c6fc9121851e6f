"""
Palette Extraction Module

Turns a photo into a small ordered LayerStack of filament colors.

Algorithms:
- DOMINANT: quantized color histogram, perceptual merge of similar colors,
  then a greedy max-min selection seeded by the darkest and lightest colors
- POSTERIZED: 5 luminance quantile bands, each represented by its mean color
- GRAYSCALE / GRAYSCALE_DISTRIBUTED: fixed black to white stacks

The histogram is accumulated chunk by chunk and merged; the merge is a
plain count sum, so chunk order never matters.
"""

from dataclasses import dataclass
from enum import Enum
import logging
import math
from typing import Dict, List, Optional, Tuple
import numpy as np

from .color import (
    DistanceWeights,
    brightness_transmissivity,
    color_distance_matrix,
    luminance,
    rgb_to_hsl,
)
from .config import DEFAULT_COLORS, MAX_COLORS, MIN_COLORS, OPACITY_THRESHOLD
from .ingestion import PixelBuffer
from .layers import LayerSpec, LayerStack


logger = logging.getLogger(__name__)

# Upper bound on histogram samples entering the pairwise merge
MAX_MERGE_SAMPLES = 1000


class PaletteMode(Enum):
    """Palette generation strategies."""
    DOMINANT = "dominant"
    POSTERIZED = "posterized"
    GRAYSCALE = "grayscale"
    GRAYSCALE_DISTRIBUTED = "grayscale_distributed"


def default_grayscale_stack() -> LayerStack:
    """Five evenly spaced grays, used when an image has no opaque pixels."""
    grays = [0x00, 0x40, 0x80, 0xC0, 0xFF]
    return LayerStack(
        LayerSpec((g, g, g), (i + 1) / len(grays), brightness_transmissivity(g / 255.0))
        for i, g in enumerate(grays)
    )


def grayscale_stack() -> LayerStack:
    """Black, dark gray, light gray and white with quadratic band heights."""
    colors = ["#000000", "#666666", "#cccccc", "#ffffff"]
    tds = [0.6, 1.4, 2.8, 5.0]
    fractions = [min(round(((i + 1) / 4) ** 2 * 100), 100) / 100 for i in range(4)]
    return LayerStack.from_colors(colors, fractions, tds)


def grayscale_distributed_stack() -> LayerStack:
    """Black, #404040, #808080 and white at 25/50/75/100 %."""
    return LayerStack.from_colors(
        ["#000000", "#404040", "#808080", "#ffffff"],
        [0.25, 0.5, 0.75, 1.0],
        [0.6, 1.4, 2.0, 5.0],
    )


class ColorHistogram:
    """
    Frequency histogram of quantized opaque colors.

    Each channel is quantized independently:
        q = min(255, floor(v / step + 0.5) * step),  step = 256 / levels

    Buckets also keep the channel sums of their pixels, so a bucket is
    represented by the mean of the colors that fell into it rather than by
    its quantized key.
    """

    def __init__(self, quantize_levels: int = 64, opacity_threshold: int = OPACITY_THRESHOLD):
        if quantize_levels < 1:
            raise ValueError(f"quantize_levels must be >= 1, got {quantize_levels}")
        self.quantize_levels = quantize_levels
        self.opacity_threshold = opacity_threshold
        self.counts: Dict[Tuple[int, int, int], int] = {}
        self.sums: Dict[Tuple[int, int, int], np.ndarray] = {}

    @property
    def step(self) -> float:
        return 256.0 / self.quantize_levels

    @property
    def total(self) -> int:
        """Number of opaque pixels accumulated."""
        return sum(self.counts.values())

    def __len__(self) -> int:
        return len(self.counts)

    def quantize(self, rgb: np.ndarray) -> np.ndarray:
        """Quantize (N, 3) RGB values to bucket centers."""
        step = self.step
        q = np.floor(np.asarray(rgb, dtype=np.float64) / step + 0.5) * step
        return np.minimum(q, 255.0).astype(np.int64)

    def add_pixels(self, rgba: np.ndarray) -> "ColorHistogram":
        """
        Accumulate a block of RGBA pixels of any leading shape.

        Returns:
            self for method chaining
        """
        pixels = np.asarray(rgba).reshape(-1, 4)
        opaque = pixels[pixels[:, 3] >= self.opacity_threshold, :3]
        if len(opaque) == 0:
            return self

        buckets, inverse, counts = np.unique(
            self.quantize(opaque), axis=0, return_inverse=True, return_counts=True
        )
        inverse = inverse.reshape(-1)
        opaque = opaque.astype(np.float64)
        sums = np.column_stack([
            np.bincount(inverse, weights=opaque[:, c], minlength=len(buckets))
            for c in range(3)
        ])

        for bucket, count, bucket_sum in zip(map(tuple, buckets.tolist()), counts.tolist(), sums):
            self._accumulate(bucket, count, bucket_sum)
        return self

    def _accumulate(self, bucket: Tuple[int, int, int], count: int, bucket_sum: np.ndarray):
        self.counts[bucket] = self.counts.get(bucket, 0) + count
        if bucket in self.sums:
            self.sums[bucket] = self.sums[bucket] + bucket_sum
        else:
            self.sums[bucket] = np.array(bucket_sum, dtype=np.float64)

    def merge(self, other: "ColorHistogram") -> "ColorHistogram":
        """Return a new histogram holding the sum of both."""
        if other.quantize_levels != self.quantize_levels:
            raise ValueError("Cannot merge histograms with different quantize levels")
        merged = ColorHistogram(self.quantize_levels, self.opacity_threshold)
        for source in (self, other):
            for bucket, count in source.counts.items():
                merged._accumulate(bucket, count, source.sums[bucket])
        return merged

    @classmethod
    def from_buffer(
        cls,
        buffer: PixelBuffer,
        quantize_levels: int = 64,
        chunk_rows: int = 256
    ) -> "ColorHistogram":
        """Accumulate a whole pixel buffer in row chunks."""
        histogram = cls(quantize_levels, buffer.opacity_threshold)
        for chunk in buffer.iter_row_chunks(chunk_rows):
            histogram.add_pixels(chunk)
        return histogram

    def to_arrays(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Returns:
            Tuple of (colors, counts): (K, 3) float64 mean bucket colors
            sorted by bucket key and the matching (K,) int64 counts
        """
        if not self.counts:
            return np.zeros((0, 3), dtype=np.float64), np.zeros(0, dtype=np.int64)
        keys = sorted(self.counts)
        counts = np.array([self.counts[k] for k in keys], dtype=np.int64)
        colors = np.array([self.sums[k] for k in keys], dtype=np.float64) / counts[:, None]
        return colors, counts


@dataclass
class ExtractorOptions:
    """Tunables of the dominant color extractor."""
    quantize_levels: int = 64
    rgb_weight: float = 0.3
    hsl_weight: float = 0.7
    hue_weight: float = 15.0
    saturation_weight: float = 5.0
    lightness_weight: float = 4.0
    similarity_threshold: float = 0.15
    noise_fraction: float = 0.001
    min_saturation: float = 0.0
    chunk_rows: int = 256

    @property
    def weights(self) -> DistanceWeights:
        return DistanceWeights(
            self.rgb_weight,
            self.hsl_weight,
            self.hue_weight,
            self.saturation_weight,
            self.lightness_weight,
        )


def color_importance(counts: np.ndarray, hsl: np.ndarray) -> np.ndarray:
    """
    Importance score of histogram samples.

    importance = (log10(count + 1)^2 * 5 + sat^2 * 2) * (1 + 0.3 * sin(2 pi hue))
                 - (lightness - 0.5)^2
    """
    counts = np.asarray(counts, dtype=np.float64)
    hue, sat, light = hsl[:, 0], hsl[:, 1], hsl[:, 2]
    frequency = np.log10(counts + 1.0) ** 2 * 5.0
    saturation = sat ** 2 * 2.0
    hue_bonus = 1.0 + np.sin(hue * 2.0 * math.pi) * 0.3
    return (frequency + saturation) * hue_bonus - (light - 0.5) ** 2


def clamp_color_count(num_colors: int) -> int:
    """Clamp a requested color count to the supported range, with a warning."""
    clamped = min(max(int(num_colors), MIN_COLORS), MAX_COLORS)
    if clamped != num_colors:
        logger.warning(
            "Requested %s colors; clamping to %d (supported range %d-%d)",
            num_colors, clamped, MIN_COLORS, MAX_COLORS
        )
    return clamped


class PaletteExtractor:
    """
    Dominant color extractor.

    Produces an ordered LayerStack whose colors span the tonal range of the
    photo: the darkest and lightest clusters are always kept, the remaining
    slots go to important colors that are far from everything already picked.
    """

    def __init__(self, options: Optional[ExtractorOptions] = None):
        self.options = options or ExtractorOptions()

    def extract(self, buffer: PixelBuffer, num_colors: int = DEFAULT_COLORS) -> LayerStack:
        """
        Extract a layer stack from a pixel buffer.

        Args:
            buffer: Source image
            num_colors: Desired number of colors (clamped to 2-15)

        Returns:
            LayerStack ordered dark to light
        """
        histogram = ColorHistogram.from_buffer(
            buffer, self.options.quantize_levels, self.options.chunk_rows
        )
        return self.extract_from_histogram(histogram, num_colors)

    def extract_from_histogram(
        self,
        histogram: ColorHistogram,
        num_colors: int = DEFAULT_COLORS
    ) -> LayerStack:
        """Run the selection on an already accumulated histogram."""
        num_colors = clamp_color_count(num_colors)

        total = histogram.total
        if total == 0:
            logger.warning("Image has no opaque pixels; using the default grayscale palette")
            return default_grayscale_stack()

        colors, counts = self._drop_noise(*histogram.to_arrays(), total)
        colors, counts = self._merge_similar(colors, counts)
        selected = self._select(colors, counts, num_colors)
        stack = self._build_stack(colors[selected])

        logger.debug(
            "Extracted %d colors from %d buckets (%d after merging)",
            len(stack), len(histogram), len(colors)
        )
        return stack

    def _drop_noise(
        self,
        colors: np.ndarray,
        counts: np.ndarray,
        total: int
    ) -> Tuple[np.ndarray, np.ndarray]:
        keep = counts > total * self.options.noise_fraction
        if not np.any(keep):
            # Every bucket is rare: keep the most frequent ones instead
            order = np.argsort(-counts, kind="stable")[:MAX_MERGE_SAMPLES]
            keep = np.zeros(len(counts), dtype=bool)
            keep[order] = True
        return colors[keep], counts[keep]

    def _merge_similar(
        self,
        colors: np.ndarray,
        counts: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Merge samples closer than the similarity threshold.

        Samples are visited in importance order; each one absorbs every not
        yet visited sample within the threshold, as a count-weighted RGB
        average. Passes repeat until nothing merges.
        """
        threshold = self.options.similarity_threshold
        weights = self.options.weights

        while True:
            hsl = rgb_to_hsl(colors)
            order = np.argsort(-color_importance(counts, hsl), kind="stable")
            colors, counts, hsl = colors[order], counts[order], hsl[order]

            dist = color_distance_matrix(colors, hsl, colors, hsl, weights)
            used = np.zeros(len(colors), dtype=bool)
            merged_colors: List[np.ndarray] = []
            merged_counts: List[int] = []
            merged_any = False

            for i in range(len(colors)):
                if used[i]:
                    continue
                group = np.flatnonzero(~used & (dist[i] < threshold))
                group = np.union1d(group, [i])
                used[group] = True

                group_counts = counts[group]
                weight = group_counts.sum()
                merged_colors.append((colors[group] * group_counts[:, None]).sum(axis=0) / weight)
                merged_counts.append(int(weight))
                if len(group) > 1:
                    merged_any = True

            colors = np.array(merged_colors, dtype=np.float64)
            counts = np.array(merged_counts, dtype=np.int64)
            if not merged_any:
                return colors, counts

    def _select(self, colors: np.ndarray, counts: np.ndarray, num_colors: int) -> List[int]:
        """Greedy max-min selection seeded by the darkest and lightest samples."""
        threshold = self.options.similarity_threshold
        hsl = rgb_to_hsl(colors)
        importance = color_importance(counts, hsl)
        dist = color_distance_matrix(colors, hsl, colors, hsl, self.options.weights)

        darkest = int(np.argmin(hsl[:, 2]))
        lightest = int(np.argmax(hsl[:, 2]))
        selected = [darkest] if darkest == lightest else [darkest, lightest]

        candidates = [
            i for i in range(len(colors))
            if i not in selected
            and hsl[i, 1] >= self.options.min_saturation
            and all(dist[i, s] >= threshold for s in selected)
        ]

        while len(selected) < num_colors and candidates:
            best = None
            best_score = -np.inf
            for i in candidates:
                min_dist = min(dist[i, s] for s in selected)
                score = importance[i] * min_dist ** 1.5
                if score > best_score:
                    best_score = score
                    best = i
            if best is None:
                break

            selected.append(best)
            candidates = [i for i in candidates if i != best and dist[i, best] >= threshold]

        return selected

    def _build_stack(self, colors: np.ndarray) -> LayerStack:
        """Order by lightness, drop repeated colors, assign fractions and TDs."""
        rounded = [tuple(int(c) for c in np.floor(color + 0.5)) for color in colors]
        hsl = rgb_to_hsl(np.array(rounded, dtype=np.float64))
        order = sorted(range(len(rounded)), key=lambda i: hsl[i, 2])
        entries = [(rounded[i], hsl[i]) for i in order]

        kept = [entries[0]]
        for entry in entries[1:-1]:
            if entry[0] != kept[-1][0]:
                kept.append(entry)
        top = entries[-1]
        if top[0] != kept[-1][0] or len(kept) == 1:
            kept.append(top)

        n = len(kept)
        layers = []
        for i, (color, color_hsl) in enumerate(kept):
            if i == 0:
                td = 1.5
            else:
                previous = kept[i - 1][1]
                td = 1.5 + abs(color_hsl[2] - previous[2]) * 0.5 + abs(color_hsl[1] - previous[1]) * 0.3
            layers.append(LayerSpec(color, (i + 1) / n, float(td)))
        return LayerStack(layers)


def posterized_stack(buffer: PixelBuffer, num_levels: int = 5) -> LayerStack:
    """
    Posterize by luminance quantiles.

    Opaque pixels are split into `num_levels` bands holding roughly equal
    pixel counts; each band contributes its mean color. Empty bands fall
    back to an evenly spaced gray. Band heights follow ((i + 1) / n)^1.8.
    """
    pixels = buffer.rgba.reshape(-1, 4)
    rgb = pixels[pixels[:, 3] >= buffer.opacity_threshold, :3].astype(np.float64)
    if len(rgb) == 0:
        logger.warning("Image has no opaque pixels; using the default grayscale palette")
        return default_grayscale_stack()

    lum = luminance(rgb)
    histogram = np.bincount(np.floor(lum + 0.5).astype(np.int64), minlength=256)
    cumulative = np.cumsum(histogram)
    per_level = len(rgb) / num_levels
    thresholds = [
        int(np.searchsorted(cumulative, per_level * (k + 1), side="left"))
        for k in range(num_levels - 1)
    ]
    band = np.searchsorted(np.array(thresholds), lum, side="left")

    levels = []
    for index in range(num_levels):
        members = band == index
        if not np.any(members):
            gray = int(round(index / (num_levels - 1) * 255))
            levels.append(((gray, gray, gray), brightness_transmissivity(gray / 255.0)))
            continue
        mean = rgb[members].mean(axis=0)
        color = tuple(int(c) for c in np.floor(mean + 0.5))
        levels.append((color, brightness_transmissivity(lum[members].mean() / 255.0)))

    levels.sort(key=lambda level: float(luminance(np.array(level[0], dtype=np.float64))))
    fractions = [min(round(((i + 1) / num_levels) ** 1.8 * 100), 100) / 100 for i in range(num_levels)]
    return LayerStack(
        LayerSpec(color, fraction, td) for (color, td), fraction in zip(levels, fractions)
    )


def extract_palette(
    buffer: PixelBuffer,
    num_colors: int = DEFAULT_COLORS,
    mode: PaletteMode = PaletteMode.DOMINANT,
    options: Optional[ExtractorOptions] = None
) -> LayerStack:
    """
    Build a layer stack for an image with the chosen strategy.

    Args:
        buffer: Source image
        num_colors: Desired color count (DOMINANT only)
        mode: Palette strategy
        options: Dominant extractor tunables
    """
    if mode == PaletteMode.DOMINANT:
        return PaletteExtractor(options).extract(buffer, num_colors)
    if mode == PaletteMode.POSTERIZED:
        return posterized_stack(buffer)
    if mode == PaletteMode.GRAYSCALE:
        return grayscale_stack()
    if mode == PaletteMode.GRAYSCALE_DISTRIBUTED:
        return grayscale_distributed_stack()
    raise ValueError(f"Unknown palette mode: {mode}")
