"""Lab checkoff portal client core.

Bounded contexts:
    identity_access: credential store adapter, token cache, session manager
    storage:         upload size limit and MIME policy
    learning:        student-facing labs, video uploads, self-checkoffs
    teaching:        staff-facing review queue, lab locks, grades
"""

__version__ = "0.4.0"
