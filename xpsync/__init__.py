"""Client-side XP / level / streak synchronizer for EduGame."""

__version__ = "0.1.0"
