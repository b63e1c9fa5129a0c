"""
CLI command modules for ExamForge.

Provides shared helpers for all CLI command modules.
"""

from examforge.models import DefinitionError, load_test_definition


def load_test_or_report(path):
    """Load a test definition, printing a one-line error on failure.

    Returns:
        The TestDefinition, or None if it could not be loaded.
    """
    try:
        return load_test_definition(path)
    except DefinitionError as e:
        print(f"Error: {e}")
        return None
