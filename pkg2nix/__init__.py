"""Convert .deb packages and AppImages into Nix recipes."""

__version__ = "0.1.0"
