"""Nutrient salt recipe optimizer for hydroponic target ion profiles."""

__version__ = "0.1.0"
