# Lesson Sequencer - ordering and module assignment for course lessons
"""
Lesson Sequencer keeps a course's lessons in order while an editor drags
them between positions and modules, applying every move optimistically and
reconciling it against a remote course API.
"""

__version__ = "0.1.0"
