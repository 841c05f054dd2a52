"""Common utility functions."""

from .geo import calculate_distance, is_valid_coordinate, bounding_box

__all__ = [
    "calculate_distance",
    "is_valid_coordinate",
    "bounding_box",
]
