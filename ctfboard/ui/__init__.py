"""
UI Module - Discord UI Components

Available components:
- ConfirmationView: Button-based confirmation for admin batch operations
"""
