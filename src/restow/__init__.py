"""restow: template-driven, crash-safe relocation of asset files."""

__version__ = "0.3.0"
