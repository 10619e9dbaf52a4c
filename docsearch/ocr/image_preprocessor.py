"""
Image Preprocessing Chain

Prepares a page image for recognition. Stages run in a fixed order and each
one can be toggled independently:
- Rotate (clockwise, canvas expanded so nothing is cropped)
- Binarize (grayscale + global threshold)
- Denoise (non-local means)
- Deskew (Hough line skew estimate, counter-rotated)
"""

import cv2
import numpy as np
import logging
from typing import List, Optional

from ..models import PreprocessOptions

logger = logging.getLogger(__name__)

STAGE_ORDER = ('rotate', 'binarize', 'denoise', 'deskew')

# Skew angles below this are left alone
MIN_SKEW_ANGLE = 0.5


def stages_for(options: PreprocessOptions) -> List[str]:
    """Names of the enabled stages, in the order they will run"""
    enabled = {
        'rotate': bool(options.rotate),
        'binarize': options.binarize,
        'denoise': options.denoise,
        'deskew': options.deskew,
    }
    return [stage for stage in STAGE_ORDER if enabled[stage]]


def _to_gray(image: np.ndarray) -> np.ndarray:
    if len(image.shape) == 2:
        return image
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_RGBA2GRAY)
    return cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)


def _rotate_expanded(image: np.ndarray, angle: float) -> np.ndarray:
    """
    Rotate counter-clockwise by `angle` degrees around the center, growing
    the canvas to fit and filling the new area with white.
    """
    height, width = image.shape[:2]
    center = (width // 2, height // 2)

    rotation_matrix = cv2.getRotationMatrix2D(center, angle, 1.0)

    # New bounding box size to avoid cropping
    cos = np.abs(rotation_matrix[0, 0])
    sin = np.abs(rotation_matrix[0, 1])
    new_width = int((height * sin) + (width * cos))
    new_height = int((height * cos) + (width * sin))

    rotation_matrix[0, 2] += (new_width / 2) - center[0]
    rotation_matrix[1, 2] += (new_height / 2) - center[1]

    return cv2.warpAffine(
        image,
        rotation_matrix,
        (new_width, new_height),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=(255, 255, 255)
    )


class ImagePreprocessor:
    """Applies the enabled preprocessing stages to a page image"""

    def __init__(self, options: Optional[PreprocessOptions] = None):
        """
        Args:
            options: Stage switches; defaults binarize at threshold 128 only
        """
        self.options = options or PreprocessOptions()

    @property
    def stages(self) -> List[str]:
        return stages_for(self.options)

    def preprocess(self, image: np.ndarray) -> np.ndarray:
        """
        Run the enabled stages in order rotate -> binarize -> denoise -> deskew.

        Args:
            image: Input image (grayscale, RGB or RGBA)

        Returns:
            New image; the input array is never modified
        """
        result = image.copy()
        stages = self.stages
        logger.debug(f"Preprocessing image {image.shape} with stages {stages}")

        for stage in stages:
            result = getattr(self, f'_{stage}')(result)

        return result

    def _rotate(self, image: np.ndarray) -> np.ndarray:
        angle = float(self.options.rotate)
        rotated = _rotate_expanded(image, -angle)
        logger.debug(f"Rotated image {angle:.1f}° clockwise")
        return rotated

    def _binarize(self, image: np.ndarray) -> np.ndarray:
        gray = _to_gray(image)
        _, binary = cv2.threshold(
            gray, int(self.options.threshold), 255, cv2.THRESH_BINARY
        )
        logger.debug(f"Applied global threshold at {self.options.threshold}")
        return binary

    def _denoise(self, image: np.ndarray) -> np.ndarray:
        if len(image.shape) == 3 and image.shape[2] == 3:
            denoised = cv2.fastNlMeansDenoisingColored(image, None, 10, 10, 7, 21)
        else:
            denoised = cv2.fastNlMeansDenoising(_to_gray(image), h=10)
        logger.debug("Applied denoising")
        return denoised

    def _deskew(self, image: np.ndarray) -> np.ndarray:
        angle = self.estimate_skew(image)
        if angle is None or abs(angle) < MIN_SKEW_ANGLE:
            logger.debug("No significant skew detected, leaving image as is")
            return image

        logger.debug(f"Detected skew angle: {angle:.2f}°, applying deskew")
        return _rotate_expanded(image, angle)

    @staticmethod
    def estimate_skew(image: np.ndarray) -> Optional[float]:
        """
        Estimate document skew from the median angle of detected lines.

        Returns:
            Angle in degrees normalized to [-45, 45], or None if no lines
            were found
        """
        gray = _to_gray(image)
        _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
        edges = cv2.Canny(binary, 50, 150, apertureSize=3)

        lines = cv2.HoughLinesP(
            edges,
            rho=1,
            theta=np.pi / 180,
            threshold=100,
            minLineLength=100,
            maxLineGap=10
        )
        if lines is None or len(lines) == 0:
            return None

        angles = []
        # (N, 1, 4) in OpenCV 4, (N, 4) in OpenCV 5
        for x1, y1, x2, y2 in lines.reshape(-1, 4):
            angles.append(np.degrees(np.arctan2(y2 - y1, x2 - x1)))

        median_angle = float(np.median(angles))
        if median_angle < -45:
            median_angle = 90 + median_angle
        elif median_angle > 45:
            median_angle = median_angle - 90
        return median_angle
