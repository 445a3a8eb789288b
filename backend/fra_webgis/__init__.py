"""Layer and category state engine for the FRA / land-use WebGIS viewer."""

__version__ = "1.0.0"
