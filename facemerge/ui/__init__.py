"""User interface modules."""
