# medtrack/errors.py

class MedtrackError(Exception):
    """Base for failures reported back to the user."""

class ValidationError(MedtrackError):
    pass

class NotFoundError(MedtrackError):
    pass

class SlotConflict(MedtrackError):
    """The dose slot already has a recorded outcome; undo it first."""
