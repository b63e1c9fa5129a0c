"""
ExamForge: grading and variant-generation engine for SCORM 2004 test packages.
"""

__version__ = "1.0.0"
