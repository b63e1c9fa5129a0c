"""Local web player for previewing ExamForge tests."""
