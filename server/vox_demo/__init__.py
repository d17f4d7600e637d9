"""Demo-session change tracking and reset for the shared VoxCampus demo account."""

__version__ = "0.1.0"
