"""
Conatus Data Transformations
"""

from conatus.automation.transforms.engine import TransformationEngine

__all__ = ["TransformationEngine"]
