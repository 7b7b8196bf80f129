"""
drawing preprocessing pipeline (greyscale, straight resize to a fixed square, flatten)

one canonical path is shared by storage, training and prediction:
- encode() is applied to every upload before it is stored
- features() turns stored (encoded) bytes into the flat vector fed to the classifier
- features_from_upload() = features(encode(raw)) so raw uploads at predict time
  go through exactly the same steps as stored training images
"""
from __future__ import annotations

import io

import numpy as np
from PIL import Image, UnidentifiedImageError

TARGET_SIZE = 256
JPEG_QUALITY = 90


class DecodeError(ValueError):
    """raised when uploaded bytes are not a decodable raster image"""


class DrawingPreprocessor:
    """preprocess drawing images for the dense classifier"""

    mode = "L"
    channels = 1

    def __init__(self, target_size: int = TARGET_SIZE, quality: int = JPEG_QUALITY):
        """init with target size (default 256) and jpeg quality used for storage"""
        self.target_size = target_size
        self.quality = quality

    @property
    def feature_length(self) -> int:
        return self.target_size * self.target_size * self.channels

    def load(self, raw: bytes) -> Image.Image:
        """decode bytes into a greyscale image resized to the target square"""
        try:
            image = Image.open(io.BytesIO(raw))
            image.load()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as exc:
            raise DecodeError(f"could not decode image: {exc}") from exc

        if image.mode != self.mode:
            image = image.convert(self.mode)

        # no aspect ratio preservation, straight resize
        return image.resize((self.target_size, self.target_size), Image.Resampling.BILINEAR)

    def encode(self, raw: bytes) -> bytes:
        """greyscale + resize + re-encode as jpeg, the stored form of a training image"""
        image = self.load(raw)
        buf = io.BytesIO()
        image.save(buf, format="JPEG", quality=self.quality)
        return buf.getvalue()

    def features(self, encoded: bytes) -> np.ndarray:
        """flatten pixel values into a float32 vector of length feature_length"""
        image = self.load(encoded)
        return np.asarray(image, dtype=np.float32).reshape(-1)

    def features_from_upload(self, raw: bytes) -> np.ndarray:
        return self.features(self.encode(raw))

    def features_batch(self, encoded_images: list) -> np.ndarray:
        """
        Stack features for a list of stored images

        Args:
            encoded_images: list of stored image bytes

        Returns:
            float32 array of shape (len(encoded_images), feature_length)
        """
        if not encoded_images:
            return np.zeros((0, self.feature_length), dtype=np.float32)
        return np.stack([self.features(data) for data in encoded_images])
